"""Session scores and the profile level derived from the accumulated score.

A session scores ``cpm * complexity / (errors + 1) * (length / 50)``, where
complexity is the unlocked share of all symbols (floored at 0.1). The level is
``floor(sqrt(total / 100))``, never below 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from .models import KeyTime
from .symbols import is_backspace

MIN_COMPLEXITY = 0.1
SCORE_LENGTH_UNIT = 50.0
LEVEL_SCORE_UNIT = 100.0
MIN_ELAPSED_MS = 100.0


@dataclass(frozen=True, slots=True)
class SessionResult:
    cpm: float
    incorrect: int
    total_chars: int


def session_result(keystrokes: Sequence[KeyTime]) -> SessionResult:
    """Summarise a session: correct characters per minute, typos and length.

    Backspace presses count toward elapsed time but are not characters.
    """
    typed = [kt for kt in keystrokes if not is_backspace(kt.symbol)]
    correct = sum(1 for kt in typed if kt.correct)
    elapsed_ms = sum(kt.time_ms for kt in keystrokes)
    cpm = 0.0 if elapsed_ms < MIN_ELAPSED_MS else correct / (elapsed_ms / 60000.0)
    return SessionResult(cpm=cpm, incorrect=len(typed) - correct, total_chars=len(typed))


def compute_complexity(unlocked_count: int, total_symbols: int) -> float:
    if total_symbols <= 0:
        return MIN_COMPLEXITY
    return max(MIN_COMPLEXITY, unlocked_count / total_symbols)


def compute_score(result: SessionResult, complexity: float) -> float:
    return (result.cpm * complexity) / (result.incorrect + 1) * (result.total_chars / SCORE_LENGTH_UNIT)


def level_from_score(total_score: float) -> int:
    return max(1, int(math.sqrt(max(total_score, 0.0) / LEVEL_SCORE_UNIT)))


def score_to_next_level(total_score: float) -> float:
    """Points still needed to reach the next level."""
    next_level = level_from_score(total_score) + 1
    return next_level**2 * LEVEL_SCORE_UNIT - total_score


__all__ = [
    "SessionResult",
    "compute_complexity",
    "compute_score",
    "level_from_score",
    "score_to_next_level",
    "session_result",
]
