"""Shared data types for symbol and pair statistics, skill-tree progress, and focus."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal, cast

BranchStatus = Literal["locked", "available", "in_progress", "complete"]
AnomalyKind = Literal["error", "speed"]
FocusKind = Literal["symbol", "pair"]

BRANCH_STATUSES: tuple[BranchStatus, ...] = ("locked", "available", "in_progress", "complete")
ANOMALY_KINDS: tuple[AnomalyKind, ...] = ("error", "speed")

GLOBAL_SCOPE = "global"

PairKey = tuple[str, ...]


@dataclass(slots=True)
class SymbolStat:
    filtered_time_ms: float = 1000.0
    best_time_ms: float = math.inf
    confidence: float = 0.0
    sample_count: int = 0
    error_count: int = 0
    total_count: int = 0
    error_rate_ema: float = 0.5
    recent_times: list[float] = field(default_factory=list)


@dataclass(slots=True)
class PairStat:
    filtered_time_ms: float = 1000.0
    best_time_ms: float = math.inf
    confidence: float = 0.0
    sample_count: int = 0
    error_count: int = 0
    hesitation_count: int = 0
    error_rate_ema: float = 0.5
    error_anomaly_streak: int = 0
    speed_anomaly_streak: int = 0
    last_seen_index: int = 0
    recent_times: list[float] = field(default_factory=list)
    recent_correct: list[bool] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class KeyTime:
    """One keystroke: the expected symbol, elapsed ms since the previous key, and correctness."""
    symbol: str
    time_ms: float
    correct: bool


@dataclass(frozen=True, slots=True)
class PairEvent:
    key: PairKey
    time_ms: float
    correct: bool
    hesitation: bool


@dataclass(frozen=True, slots=True)
class PairAnomaly:
    key: PairKey
    kind: AnomalyKind
    ratio: float
    percent: float
    streak: int


@dataclass(slots=True)
class BranchProgress:
    status: BranchStatus = "locked"
    current_level: int = 0


@dataclass(slots=True)
class SkillTreeProgress:
    branches: dict[str, BranchProgress] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SkillTreeChanges:
    newly_available: tuple[str, ...] = ()
    newly_completed: tuple[str, ...] = ()
    levels_advanced: tuple[tuple[str, int], ...] = ()
    all_symbols_unlocked: bool = False
    all_branches_complete: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(
            self.newly_available
            or self.newly_completed
            or self.levels_advanced
            or self.all_symbols_unlocked
            or self.all_branches_complete
        )


@dataclass(frozen=True, slots=True)
class FocusSelection:
    """Snapshot of what the next practice text should emphasise.

    Both fields may be set. A confirmed pair anomaly outranks the symbol focus
    when a consumer can only use one of them.
    """
    char_focus: str | None = None
    bigram_focus: PairAnomaly | None = None

    def primary(self) -> tuple[FocusKind, str | PairKey] | None:
        if self.bigram_focus is not None:
            return "pair", self.bigram_focus.key
        if self.char_focus is not None:
            return "symbol", self.char_focus
        return None


def ensure_branch_status(value: str) -> BranchStatus:
    """Normalise and validate a branch status string."""

    normalized = value.strip().lower()
    if normalized not in BRANCH_STATUSES:
        raise ValueError(f"Unsupported branch status: {value}")
    return cast(BranchStatus, normalized)


def ensure_anomaly_kind(value: str) -> AnomalyKind:
    normalized = value.strip().lower()
    if normalized not in ANOMALY_KINDS:
        raise ValueError(f"Unsupported anomaly kind: {value}")
    return cast(AnomalyKind, normalized)


__all__ = [
    "ANOMALY_KINDS",
    "AnomalyKind",
    "BRANCH_STATUSES",
    "BranchProgress",
    "BranchStatus",
    "FocusKind",
    "FocusSelection",
    "GLOBAL_SCOPE",
    "KeyTime",
    "PairAnomaly",
    "PairEvent",
    "PairKey",
    "PairStat",
    "SkillTreeChanges",
    "SkillTreeProgress",
    "SymbolStat",
    "ensure_anomaly_kind",
    "ensure_branch_status",
]
