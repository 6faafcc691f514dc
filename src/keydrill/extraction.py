"""Turn a session's keystroke sequence into bigram and trigram observations."""

from __future__ import annotations

from typing import Iterable, Sequence

from .config import HESITATION_FLOOR_MS, HESITATION_MULTIPLIER
from .models import KeyTime, PairEvent
from .symbols import is_backspace, is_word_boundary


def hesitation_threshold(
    median_transition_ms: float,
    floor_ms: float = HESITATION_FLOOR_MS,
    multiplier: float = HESITATION_MULTIPLIER,
) -> float:
    """Transition time above which a keystroke counts as a hesitation for this user."""
    return max(floor_ms, multiplier * median_transition_ms)


def compute_median(values: Iterable[float]) -> float:
    """Median of ``values``; 0.0 for an empty input."""
    ordered = sorted(values)
    if not ordered:
        return 0.0
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return ordered[mid]


def _window_events(keys: Sequence[KeyTime], size: int, threshold_ms: float) -> list[PairEvent]:
    events: list[PairEvent] = []
    for start in range(len(keys) - size + 1):
        window = keys[start:start + size]
        if any(is_word_boundary(kt.symbol) for kt in window):
            continue
        # The first key's time is the transition into the window, not within it.
        transitions = window[1:]
        events.append(
            PairEvent(
                key=tuple(kt.symbol for kt in window),
                time_ms=sum(kt.time_ms for kt in transitions),
                correct=all(kt.correct for kt in window),
                hesitation=any(kt.time_ms > threshold_ms for kt in transitions),
            )
        )
    return events


def extract_pair_events(
    keystrokes: Sequence[KeyTime],
    hesitation_threshold_ms: float,
) -> tuple[list[PairEvent], list[PairEvent]]:
    """Return (bigram_events, trigram_events) for one session.

    Backspace records are dropped first; windows never span a word boundary.
    """
    keys = [kt for kt in keystrokes if not is_backspace(kt.symbol)]
    return (
        _window_events(keys, 2, hesitation_threshold_ms),
        _window_events(keys, 3, hesitation_threshold_ms),
    )


__all__ = [
    "compute_median",
    "extract_pair_events",
    "hesitation_threshold",
]
