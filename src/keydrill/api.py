"""FastAPI routes: session submission, focus, skill tree, and stats views."""

from __future__ import annotations

import logging
import math
import threading
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from . import db
from .config import load_config
from .engine import MasteryEngine
from .focus import describe_focus
from .models import GLOBAL_SCOPE, KeyTime, PairAnomaly, SkillTreeChanges, ensure_anomaly_kind
from .pair_stats import trigram_marginal_gain
from .symbol_stats import SymbolStatsStore, learning_trend
from .symbols import display_name, format_pair, normalize_symbol

logger = logging.getLogger(__name__)

# Routes are async so engine updates run one at a time on the event loop.
router = APIRouter()

_engine: MasteryEngine | None = None
_engine_lock = threading.Lock()


class KeystrokeIn(BaseModel):
    symbol: str
    time_ms: float = Field(ge=0)
    correct: bool = True


class SessionIn(BaseModel):
    keystrokes: list[KeystrokeIn]
    scope: str = GLOBAL_SCOPE


def build_engine() -> MasteryEngine:
    """Load symbol stats and progress from the database, then rebuild pair stats from the log."""
    db.init_db()
    config = load_config()
    symbol_stats = SymbolStatsStore(config, db.load_symbol_stats())
    symbol_stats.set_target_cpm(config.target_cpm)
    engine = MasteryEngine(config=config, symbol_stats=symbol_stats, progress=db.load_progress())
    engine.rebuild_pair_stats(db.load_sessions())
    engine.total_score = db.total_score()
    engine.skill_tree.update(engine.symbol_stats)
    engine.select_focus()
    return engine


def get_engine() -> MasteryEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = build_engine()
        return _engine


def reset_engine() -> None:
    """Drop the in-memory engine; the next request rebuilds it from the database."""
    global _engine
    with _engine_lock:
        _engine = None


def _finite(value: float) -> float | None:
    return None if math.isinf(value) else value


def _changes_payload(changes: SkillTreeChanges) -> dict[str, Any]:
    return {
        "newly_available": list(changes.newly_available),
        "newly_completed": list(changes.newly_completed),
        "levels_advanced": {bid: delta for bid, delta in changes.levels_advanced},
        "all_symbols_unlocked": changes.all_symbols_unlocked,
        "all_branches_complete": changes.all_branches_complete,
    }


def _anomaly_payload(anomaly: PairAnomaly) -> dict[str, Any]:
    return {
        "pair": "".join(anomaly.key),
        "label": format_pair(anomaly.key),
        "kind": anomaly.kind,
        "ratio": anomaly.ratio,
        "percent": anomaly.percent,
        "streak": anomaly.streak,
    }


def _check_scope(engine: MasteryEngine, scope: str) -> None:
    if scope != GLOBAL_SCOPE and scope not in engine.skill_tree.catalog:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown scope: {scope}")


@router.post("/sessions")
async def submit_session(payload: SessionIn) -> dict[str, Any]:
    engine = get_engine()
    _check_scope(engine, payload.scope)
    try:
        keystrokes = [
            KeyTime(symbol=normalize_symbol(k.symbol), time_ms=k.time_ms, correct=k.correct)
            for k in payload.keystrokes
        ]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    outcome = engine.record_session(keystrokes, payload.scope)
    session_id = db.store_session(
        keystrokes,
        payload.scope,
        outcome.score,
        engine.symbol_stats.stats,
        engine.skill_tree.progress,
    )
    logger.debug("Stored session %d (%d keystrokes)", session_id, len(keystrokes))

    return {
        "session_id": session_id,
        "session_index": outcome.session_index,
        "hesitation_threshold_ms": outcome.hesitation_threshold_ms,
        "score": outcome.score,
        "total_score": outcome.total_score,
        "level": outcome.level,
        "changes": _changes_payload(outcome.changes),
        "focus": describe_focus(outcome.focus),
    }


@router.get("/focus")
async def get_focus(scope: str | None = Query(default=None)) -> dict[str, Any]:
    """The held focus snapshot, or a fresh one for ``scope`` when given."""
    engine = get_engine()
    if scope is None:
        return describe_focus(engine.focus)
    _check_scope(engine, scope)
    return describe_focus(engine.select_focus(scope))


@router.get("/skill-tree")
async def get_skill_tree() -> dict[str, Any]:
    engine = get_engine()
    tree = engine.skill_tree
    branches = []
    for branch, bp in tree.branches_with_progress():
        branches.append({
            "id": branch.id,
            "name": branch.name,
            "status": bp.status,
            "current_level": bp.current_level,
            "stage_count": branch.stage_count,
            "total_symbols": tree.branch_total_symbols(branch.id),
            "confident_symbols": tree.branch_confident_symbols(branch.id, engine.symbol_stats),
            "unlocked_symbols": [s for s in tree.unlocked_symbols(branch.id) if s in branch.all_symbols()],
        })
    return {
        "root": tree.catalog.root_id,
        "branches": branches,
        "total_unlocked": tree.total_unlocked_count(),
        "total_symbols": tree.total_unique_symbols,
        "complexity": tree.complexity(),
        "total_score": engine.total_score,
        "level": engine.level,
    }


@router.post("/branches/{branch_id}/start")
async def start_branch(branch_id: str) -> dict[str, Any]:
    engine = get_engine()
    if branch_id not in engine.skill_tree.catalog:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown branch: {branch_id}")
    if not engine.start_branch(branch_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Branch {branch_id} is {engine.skill_tree.branch_status(branch_id)}",
        )
    db.save_progress(engine.skill_tree.progress)
    engine.select_focus(branch_id)
    return {"branch_id": branch_id, "status": engine.skill_tree.branch_status(branch_id)}


@router.get("/unlocked")
async def get_unlocked(scope: str = Query(default=GLOBAL_SCOPE)) -> dict[str, Any]:
    engine = get_engine()
    _check_scope(engine, scope)
    return {"scope": scope, "symbols": engine.unlocked_symbols(scope)}


@router.get("/stats/symbols")
async def get_symbol_stats() -> list[dict[str, Any]]:
    store = get_engine().symbol_stats
    rows = []
    for symbol in sorted(store.stats):
        stat = store.stats[symbol]
        rows.append({
            "symbol": symbol,
            "label": display_name(symbol),
            "filtered_time_ms": stat.filtered_time_ms,
            "best_time_ms": _finite(stat.best_time_ms),
            "confidence": stat.confidence,
            "sample_count": stat.sample_count,
            "error_count": stat.error_count,
            "total_count": stat.total_count,
            "error_rate": stat.error_rate_ema,
            "laplace_error_rate": store.laplace_error_rate(symbol),
            "trend": learning_trend(stat.recent_times),
        })
    return rows


@router.get("/stats/pairs")
async def get_pair_stats(
    order: int = Query(default=2),
    kind: str | None = Query(default=None),
) -> dict[str, Any]:
    """Confirmed anomalies for one pair order, optionally limited to one axis."""
    engine = get_engine()
    if order == 2:
        store, sub_pairs = engine.bigrams, None
    elif order == 3:
        store, sub_pairs = engine.trigrams, engine.bigrams
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported order: {order}")
    try:
        wanted = ensure_anomaly_kind(kind) if kind is not None else None
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    anomalies = store.confirmed_anomalies(engine.symbol_stats, sub_pairs)
    if wanted is not None:
        anomalies = [a for a in anomalies if a.kind == wanted]
    result: dict[str, Any] = {
        "order": order,
        "tracked": len(store),
        "anomalies": [_anomaly_payload(a) for a in anomalies],
    }
    if order == 3:
        result["marginal_gain"] = trigram_marginal_gain(engine.trigrams, engine.bigrams, engine.symbol_stats)
    return result


__all__ = [
    "build_engine",
    "get_engine",
    "reset_engine",
    "router",
]
