"""SQLite persistence: the append-only keystroke log plus symbol stats and skill-tree progress.

Pair statistics are not stored. They are rebuilt from the log at startup.
"""

from __future__ import annotations

import json
import math
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence

from .models import (
    BranchProgress,
    KeyTime,
    SkillTreeProgress,
    SymbolStat,
    ensure_branch_status,
)

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DATA_DIR / "keydrill.db"
DB_PATH = Path(os.environ.get("KEYDRILL_DB_PATH", DEFAULT_DB_PATH))


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection with foreign keys enforced."""

    connection = _open_connection()
    try:
        yield connection
        connection.commit()
    finally:
        connection.close()


def _open_connection() -> sqlite3.Connection:
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(DB_PATH)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    return connection


def now_iso(value: datetime | None = None) -> str:
    """Return the current UTC timestamp (seconds precision) as ISO 8601."""

    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="seconds")


def init_db() -> None:
    """Initialise the database schema if tables are missing."""

    with connect() as connection:
        _create_tables(connection)


def _create_tables(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            scope TEXT NOT NULL DEFAULT 'global',
            keystroke_count INTEGER NOT NULL DEFAULT 0,
            score REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS keystrokes (
            session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            symbol TEXT NOT NULL,
            time_ms REAL NOT NULL,
            correct INTEGER NOT NULL,
            PRIMARY KEY (session_id, position)
        );

        CREATE TABLE IF NOT EXISTS symbol_stats (
            symbol TEXT PRIMARY KEY,
            filtered_time_ms REAL NOT NULL,
            best_time_ms REAL,
            confidence REAL NOT NULL,
            sample_count INTEGER NOT NULL,
            error_count INTEGER NOT NULL,
            total_count INTEGER NOT NULL,
            error_rate_ema REAL NOT NULL,
            recent_times_json TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS branch_progress (
            branch_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            current_level INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        );
        """
    )
    _ensure_session_score_column(connection)


def _get_columns(connection: sqlite3.Connection, table: str) -> set[str]:
    rows = connection.execute(f"PRAGMA table_info({table})").fetchall()
    return {str(row["name"]) for row in rows}


def _ensure_session_score_column(connection: sqlite3.Connection) -> None:
    if "score" not in _get_columns(connection, "sessions"):
        connection.execute("ALTER TABLE sessions ADD COLUMN score REAL NOT NULL DEFAULT 0")


# ── Event log ────────────────────────────────────────────────────────────────


def record_session(keystrokes: Sequence[KeyTime], scope: str = "global", score: float = 0.0) -> int:
    """Append one session to the log and return its id."""
    with connect() as conn:
        return _insert_session(conn, keystrokes, scope, score)


def store_session(
    keystrokes: Sequence[KeyTime],
    scope: str,
    score: float,
    stats: dict[str, SymbolStat],
    progress: SkillTreeProgress,
) -> int:
    """Log a session and save the stats and progress it produced in one transaction."""
    with connect() as conn:
        session_id = _insert_session(conn, keystrokes, scope, score)
        _upsert_symbol_stats(conn, stats)
        _upsert_progress(conn, progress)
    return session_id


def _insert_session(
    conn: sqlite3.Connection, keystrokes: Sequence[KeyTime], scope: str, score: float
) -> int:
    cursor = conn.execute(
        "INSERT INTO sessions (scope, keystroke_count, score, created_at) VALUES (?, ?, ?, ?)",
        (scope, len(keystrokes), score, now_iso()),
    )
    session_id = int(cursor.lastrowid)
    conn.executemany(
        """
        INSERT INTO keystrokes (session_id, position, symbol, time_ms, correct)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (session_id, position, kt.symbol, kt.time_ms, int(kt.correct))
            for position, kt in enumerate(keystrokes)
        ],
    )
    return session_id


def load_sessions() -> list[list[KeyTime]]:
    """Every logged session in recording order."""
    with connect() as conn:
        session_ids = [
            int(row["id"]) for row in conn.execute("SELECT id FROM sessions ORDER BY id")
        ]
        rows = conn.execute(
            """
            SELECT session_id, symbol, time_ms, correct
            FROM keystrokes
            ORDER BY session_id, position
            """
        ).fetchall()

    by_session: dict[int, list[KeyTime]] = {session_id: [] for session_id in session_ids}
    for row in rows:
        by_session[int(row["session_id"])].append(
            KeyTime(symbol=row["symbol"], time_ms=float(row["time_ms"]), correct=bool(row["correct"]))
        )
    return [by_session[session_id] for session_id in session_ids]


def count_sessions() -> int:
    with connect() as conn:
        row = conn.execute("SELECT COUNT(*) AS n FROM sessions").fetchone()
    return int(row["n"]) if row else 0


def total_score() -> float:
    """Sum of every logged session score."""
    with connect() as conn:
        row = conn.execute("SELECT COALESCE(SUM(score), 0) AS total FROM sessions").fetchone()
    return float(row["total"]) if row else 0.0


# ── Symbol stats ─────────────────────────────────────────────────────────────


def save_symbol_stats(stats: dict[str, SymbolStat]) -> None:
    """Upsert every symbol stat."""
    with connect() as conn:
        _upsert_symbol_stats(conn, stats)


def _upsert_symbol_stats(conn: sqlite3.Connection, stats: dict[str, SymbolStat]) -> None:
    timestamp = now_iso()
    conn.executemany(
        """
        INSERT INTO symbol_stats (
            symbol, filtered_time_ms, best_time_ms, confidence, sample_count,
            error_count, total_count, error_rate_ema, recent_times_json, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(symbol) DO UPDATE SET
            filtered_time_ms = excluded.filtered_time_ms,
            best_time_ms = excluded.best_time_ms,
            confidence = excluded.confidence,
            sample_count = excluded.sample_count,
            error_count = excluded.error_count,
            total_count = excluded.total_count,
            error_rate_ema = excluded.error_rate_ema,
            recent_times_json = excluded.recent_times_json,
            updated_at = excluded.updated_at
        """,
        [
            (
                symbol,
                stat.filtered_time_ms,
                # SQLite has no infinity literal; NULL means "no best time yet".
                None if math.isinf(stat.best_time_ms) else stat.best_time_ms,
                stat.confidence,
                stat.sample_count,
                stat.error_count,
                stat.total_count,
                stat.error_rate_ema,
                json.dumps(stat.recent_times),
                timestamp,
            )
            for symbol, stat in stats.items()
        ],
    )


def load_symbol_stats() -> dict[str, SymbolStat]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM symbol_stats ORDER BY symbol").fetchall()
    return {row["symbol"]: _row_to_symbol_stat(row) for row in rows}


def _row_to_symbol_stat(row: Any) -> SymbolStat:
    best = row["best_time_ms"]
    return SymbolStat(
        filtered_time_ms=float(row["filtered_time_ms"]),
        best_time_ms=math.inf if best is None else float(best),
        confidence=float(row["confidence"]),
        sample_count=int(row["sample_count"]),
        error_count=int(row["error_count"]),
        total_count=int(row["total_count"]),
        error_rate_ema=float(row["error_rate_ema"]),
        recent_times=[float(v) for v in json.loads(row["recent_times_json"] or "[]")],
    )


# ── Skill-tree progress ──────────────────────────────────────────────────────


def save_progress(progress: SkillTreeProgress) -> None:
    with connect() as conn:
        _upsert_progress(conn, progress)


def _upsert_progress(conn: sqlite3.Connection, progress: SkillTreeProgress) -> None:
    timestamp = now_iso()
    conn.executemany(
        """
        INSERT INTO branch_progress (branch_id, status, current_level, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(branch_id) DO UPDATE SET
            status = excluded.status,
            current_level = excluded.current_level,
            updated_at = excluded.updated_at
        """,
        [
            (branch_id, bp.status, bp.current_level, timestamp)
            for branch_id, bp in progress.branches.items()
        ],
    )


def load_progress() -> SkillTreeProgress | None:
    """Stored progress, or None when nothing has been saved yet."""
    with connect() as conn:
        rows = conn.execute(
            "SELECT branch_id, status, current_level FROM branch_progress ORDER BY branch_id"
        ).fetchall()
    if not rows:
        return None
    return SkillTreeProgress(
        branches={
            row["branch_id"]: BranchProgress(
                status=ensure_branch_status(row["status"]),
                current_level=int(row["current_level"]),
            )
            for row in rows
        }
    )


__all__ = [
    "DB_PATH",
    "connect",
    "count_sessions",
    "init_db",
    "load_progress",
    "load_sessions",
    "load_symbol_stats",
    "now_iso",
    "record_session",
    "save_progress",
    "save_symbol_stats",
    "store_session",
    "total_score",
]
