"""Session-end orchestration: stats updates, skill-tree update, focus selection, replay.

Every derived statistic is a pure function of the ordered keystroke history,
so replaying the event log from empty state reproduces the live values
exactly. Pair statistics are never persisted; they are rebuilt at startup.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Sequence

from .branches import BranchCatalog
from .config import EngineConfig
from .extraction import compute_median, extract_pair_events, hesitation_threshold
from .focus import select_focus
from .models import (
    GLOBAL_SCOPE,
    FocusSelection,
    KeyTime,
    SkillTreeChanges,
    SkillTreeProgress,
)
from .pair_stats import PairStatsStore
from .scoring import compute_score, level_from_score, session_result
from .skill_tree import SkillTree
from .symbol_stats import SymbolStatsStore
from .symbols import is_backspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    session_index: int
    changes: SkillTreeChanges
    focus: FocusSelection
    hesitation_threshold_ms: float
    score: float = 0.0
    total_score: float = 0.0
    level: int = 1


class MasteryEngine:
    def __init__(
        self,
        config: EngineConfig | None = None,
        catalog: BranchCatalog | None = None,
        symbol_stats: SymbolStatsStore | None = None,
        progress: SkillTreeProgress | None = None,
    ) -> None:
        self.config = (config or EngineConfig()).validate()
        self.symbol_stats = symbol_stats or SymbolStatsStore(self.config)
        self.bigrams = PairStatsStore(2, self.config)
        self.trigrams = PairStatsStore(3, self.config)
        self.skill_tree = SkillTree(catalog, progress)
        self.session_count = 0
        self.total_score = 0.0
        self._recent_times: deque[float] = deque(maxlen=self.config.median_window)
        self.focus = FocusSelection()

    # ── Session path ─────────────────────────────────────────────────────────

    def hesitation_threshold_ms(self) -> float:
        return hesitation_threshold(
            compute_median(self._recent_times),
            self.config.hesitation_floor_ms,
            self.config.hesitation_multiplier,
        )

    def record_session(
        self,
        keystrokes: Sequence[KeyTime],
        scope: str = GLOBAL_SCOPE,
    ) -> SessionOutcome:
        """Feed one finished (or abandoned) session through the full update path."""
        if scope != GLOBAL_SCOPE:
            self.skill_tree.catalog.get(scope)
        threshold = self._apply_session(keystrokes, self.symbol_stats)
        changes = self.skill_tree.update(self.symbol_stats)
        score = self._score_session(keystrokes)
        focus = self.select_focus(scope)
        if changes.has_changes:
            logger.info("Session %d skill-tree changes: %s", self.session_count, changes)
        return SessionOutcome(
            session_index=self.session_count,
            changes=changes,
            focus=focus,
            hesitation_threshold_ms=threshold,
            score=score,
            total_score=self.total_score,
            level=self.level,
        )

    @property
    def level(self) -> int:
        return level_from_score(self.total_score)

    def _score_session(self, keystrokes: Sequence[KeyTime]) -> float:
        # Complexity is taken after the skill-tree update for this session.
        score = compute_score(session_result(keystrokes), self.skill_tree.complexity())
        self.total_score += score
        return score

    def _apply_session(self, keystrokes: Sequence[KeyTime], symbol_stats: SymbolStatsStore) -> float:
        self.session_count += 1
        index = self.session_count
        threshold = self.hesitation_threshold_ms()

        for kt in keystrokes:
            if kt.correct:
                symbol_stats.update_correct(kt.symbol, kt.time_ms)
            else:
                symbol_stats.update_error(kt.symbol)

        bigram_events, trigram_events = extract_pair_events(keystrokes, threshold)
        for event in bigram_events:
            self.bigrams.update(event.key, event.time_ms, event.correct, event.hesitation, index)
        for event in trigram_events:
            self.trigrams.update(event.key, event.time_ms, event.correct, event.hesitation, index)

        # One stability check per pair per session, in a fixed order.
        for key in sorted({event.key for event in bigram_events}):
            self.bigrams.update_anomaly_streaks(key, symbol_stats)
        for key in sorted({event.key for event in trigram_events}):
            self.trigrams.update_anomaly_streaks(key, symbol_stats, self.bigrams)

        if len(self.trigrams) > self.config.max_trigram_entries:
            removed = self.trigrams.prune(
                self.config.max_trigram_entries, index, symbol_stats, self.bigrams
            )
            logger.debug("Pruned %d trigram entries at session %d", removed, index)

        self._recent_times.extend(
            kt.time_ms for kt in keystrokes if kt.correct and not is_backspace(kt.symbol)
        )
        return threshold

    # ── Focus and branches ───────────────────────────────────────────────────

    def select_focus(self, scope: str = GLOBAL_SCOPE) -> FocusSelection:
        """Recompute and hold the focus snapshot for the next session."""
        self.focus = select_focus(self.skill_tree, scope, self.symbol_stats, self.bigrams)
        return self.focus

    def start_branch(self, branch_id: str) -> bool:
        return self.skill_tree.start_branch(branch_id)

    def unlocked_symbols(self, scope: str = GLOBAL_SCOPE) -> list[str]:
        return self.skill_tree.unlocked_symbols(scope)

    # ── Replay ───────────────────────────────────────────────────────────────

    def rebuild_pair_stats(self, sessions: Iterable[Sequence[KeyTime]]) -> None:
        """Startup path: symbol stats and progress were loaded; rebuild the pair side.

        Streak checks must see the symbol stats as they were at each session, so
        the symbol side is replayed into a scratch store and then discarded.
        """
        self.bigrams = PairStatsStore(2, self.config)
        self.trigrams = PairStatsStore(3, self.config)
        self.session_count = 0
        self._recent_times.clear()
        scratch = SymbolStatsStore(self.config)
        for keystrokes in sessions:
            self._apply_session(keystrokes, scratch)
        logger.info(
            "Rebuilt pair stats from %d sessions: %d bigrams, %d trigrams",
            self.session_count,
            len(self.bigrams),
            len(self.trigrams),
        )

    @classmethod
    def replay(
        cls,
        sessions: Iterable[Sequence[KeyTime]],
        config: EngineConfig | None = None,
        catalog: BranchCatalog | None = None,
        scope: str = GLOBAL_SCOPE,
    ) -> MasteryEngine:
        """Build an engine from empty state by replaying the full history in order."""
        engine = cls(config=config, catalog=catalog)
        for keystrokes in sessions:
            engine._apply_session(keystrokes, engine.symbol_stats)
            engine.skill_tree.update(engine.symbol_stats)
            engine._score_session(keystrokes)
        engine.select_focus(scope)
        logger.info("Replayed %d sessions", engine.session_count)
        return engine


__all__ = [
    "MasteryEngine",
    "SessionOutcome",
]
