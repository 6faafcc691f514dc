from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import api

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@asynccontextmanager
async def lifespan(_: FastAPI):
    api.get_engine()
    yield


app = FastAPI(title="Keydrill", lifespan=lifespan)
app.include_router(api.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("KEYDRILL_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        port = int(os.environ.get("KEYDRILL_PORT", DEFAULT_PORT))
    except ValueError:
        port = DEFAULT_PORT
    uvicorn.run("keydrill.app:app", host=os.environ.get("KEYDRILL_HOST", DEFAULT_HOST), port=port)


if __name__ == "__main__":
    main()
