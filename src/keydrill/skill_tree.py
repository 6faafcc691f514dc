"""Skill-tree progression: branch status transitions, level advancement, unlocked symbols.

Branch states move ``locked -> available -> in_progress -> complete``. The root
branch starts in progress; the others become available once the root is
complete and only start on an explicit ``start_branch`` call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .branches import BranchCatalog, BranchDefinition, load_branches
from .models import (
    GLOBAL_SCOPE,
    BranchProgress,
    BranchStatus,
    SkillTreeChanges,
    SkillTreeProgress,
)
from .scoring import compute_complexity
from .symbol_stats import SymbolStatsStore

logger = logging.getLogger(__name__)

MASTERY_CONFIDENCE = 1.0


def default_progress(catalog: BranchCatalog) -> SkillTreeProgress:
    """Root branch in progress, every other branch locked."""
    branches: dict[str, BranchProgress] = {}
    for branch in catalog.branches:
        status: BranchStatus = "in_progress" if branch.id == catalog.root_id else "locked"
        branches[branch.id] = BranchProgress(status=status, current_level=0)
    return SkillTreeProgress(branches=branches)


@dataclass(frozen=True, slots=True)
class _Snapshot:
    statuses: dict[str, BranchStatus]
    levels: dict[str, int]
    unlocked_count: int


class SkillTree:
    def __init__(
        self,
        catalog: BranchCatalog | None = None,
        progress: SkillTreeProgress | None = None,
    ) -> None:
        self.catalog = catalog or load_branches()
        self.progress = progress or default_progress(self.catalog)
        defaults = default_progress(self.catalog)
        for branch in self.catalog.branches:
            bp = self.progress.branches.setdefault(branch.id, defaults.branches[branch.id])
            bp.current_level = max(0, min(bp.current_level, branch.stage_count - 1))
        self.total_unique_symbols = len(self.catalog.all_symbols())
        self._snapshot = self._take_snapshot()

    # ── Progress access ──────────────────────────────────────────────────────

    def branch_progress(self, branch_id: str) -> BranchProgress:
        self.catalog.get(branch_id)
        return self.progress.branches[branch_id]

    def branch_status(self, branch_id: str) -> BranchStatus:
        return self.branch_progress(branch_id).status

    def start_branch(self, branch_id: str) -> bool:
        """available -> in_progress at level 0. Returns whether the branch started."""
        bp = self.branch_progress(branch_id)
        if bp.status != "available":
            return False
        bp.status = "in_progress"
        bp.current_level = 0
        logger.info("Branch %s started", branch_id)
        return True

    # ── Symbol sets ──────────────────────────────────────────────────────────

    def _unlocked_in(self, branch: BranchDefinition) -> tuple[str, ...]:
        bp = self.progress.branches[branch.id]
        if bp.status == "complete":
            return branch.all_symbols()
        if bp.status != "in_progress":
            return ()
        if branch.initial_symbols is not None:
            return branch.levels[0].symbols[: branch.initial_symbols + bp.current_level]
        return tuple(s for level in branch.levels[: bp.current_level + 1] for s in level.symbols)

    def _current_stage(self, branch: BranchDefinition) -> tuple[str, ...]:
        """Symbols that gate advancement and are eligible for focus."""
        bp = self.progress.branches[branch.id]
        if bp.status != "in_progress":
            return ()
        if branch.initial_symbols is not None:
            return self._unlocked_in(branch)
        return branch.levels[bp.current_level].symbols

    def _check_scope(self, scope: str) -> BranchDefinition | None:
        if scope == GLOBAL_SCOPE:
            return None
        return self.catalog.get(scope)

    def unlocked_symbols(self, scope: str = GLOBAL_SCOPE) -> list[str]:
        """Unlocked symbols for the scope; a branch scope includes the root's as background."""
        branch = self._check_scope(scope)
        symbols: list[str] = []
        if branch is None:
            for definition in self.catalog.branches:
                symbols.extend(self._unlocked_in(definition))
        else:
            if branch.id != self.catalog.root_id:
                symbols.extend(self._unlocked_in(self.catalog.root))
            symbols.extend(self._unlocked_in(branch))
        return list(dict.fromkeys(symbols))

    def focused_symbol(self, scope: str, stats: SymbolStatsStore) -> str | None:
        """Weakest not-yet-confident symbol among the current levels in scope."""
        branch = self._check_scope(scope)
        if branch is None:
            candidates: list[str] = []
            for definition in self.catalog.branches:
                candidates.extend(self._current_stage(definition))
        else:
            candidates = list(self._current_stage(branch))
        return self._weakest(dict.fromkeys(candidates), stats)

    @staticmethod
    def _weakest(symbols, stats: SymbolStatsStore) -> str | None:
        weak = [s for s in symbols if stats.get_confidence(s) < MASTERY_CONFIDENCE]
        if not weak:
            return None
        return min(weak, key=stats.get_confidence)

    # ── Transitions ──────────────────────────────────────────────────────────

    def update(self, stats: SymbolStatsStore) -> SkillTreeChanges:
        """Advance branches from the current confidences and report what changed.

        Each flag in the result is set only on the call where its condition
        first became true.
        """
        root = self.catalog.root
        self._advance(root, stats)

        if self.progress.branches[root.id].status == "complete":
            for branch in self.catalog.branches:
                bp = self.progress.branches[branch.id]
                if bp.status == "locked":
                    bp.status = "available"
                    logger.info("Branch %s available", branch.id)

        for branch in self.catalog.branches:
            if branch.id != root.id and self.progress.branches[branch.id].status == "in_progress":
                self._advance(branch, stats)

        before = self._snapshot
        after = self._take_snapshot()
        self._snapshot = after
        return self._diff(before, after)

    def _advance(self, branch: BranchDefinition, stats: SymbolStatsStore) -> None:
        bp = self.progress.branches[branch.id]
        while bp.status == "in_progress":
            if not self._all_confident(self._current_stage(branch), stats):
                return
            if bp.current_level < branch.stage_count - 1:
                bp.current_level += 1
                logger.info("Branch %s advanced to level %d", branch.id, bp.current_level)
                continue
            if self._all_confident(branch.all_symbols(), stats):
                bp.status = "complete"
                logger.info("Branch %s complete", branch.id)
            return

    @staticmethod
    def _all_confident(symbols, stats: SymbolStatsStore) -> bool:
        return all(stats.get_confidence(s) >= MASTERY_CONFIDENCE for s in symbols)

    def _take_snapshot(self) -> _Snapshot:
        return _Snapshot(
            statuses={bid: bp.status for bid, bp in self.progress.branches.items()},
            levels={bid: bp.current_level for bid, bp in self.progress.branches.items()},
            unlocked_count=self.total_unlocked_count(),
        )

    def _all_complete(self, statuses: dict[str, BranchStatus]) -> bool:
        return all(statuses.get(bid) == "complete" for bid in self.catalog.branch_ids)

    def _diff(self, before: _Snapshot, after: _Snapshot) -> SkillTreeChanges:
        ids = self.catalog.branch_ids
        newly_available = tuple(
            bid for bid in ids
            if after.statuses[bid] == "available" and before.statuses.get(bid) != "available"
        )
        newly_completed = tuple(
            bid for bid in ids
            if after.statuses[bid] == "complete" and before.statuses.get(bid) != "complete"
        )
        levels_advanced = tuple(
            (bid, after.levels[bid] - before.levels.get(bid, 0))
            for bid in ids
            if after.levels[bid] > before.levels.get(bid, 0)
        )
        total = self.total_unique_symbols
        return SkillTreeChanges(
            newly_available=newly_available,
            newly_completed=newly_completed,
            levels_advanced=levels_advanced,
            all_symbols_unlocked=before.unlocked_count < total <= after.unlocked_count,
            all_branches_complete=(
                self._all_complete(after.statuses) and not self._all_complete(before.statuses)
            ),
        )

    # ── Summaries ────────────────────────────────────────────────────────────

    def total_unlocked_count(self) -> int:
        return len(self.unlocked_symbols(GLOBAL_SCOPE))

    def complexity(self) -> float:
        """Share of all defined symbols that are unlocked, floored at 0.1."""
        return compute_complexity(self.total_unlocked_count(), self.total_unique_symbols)

    def branch_total_symbols(self, branch_id: str) -> int:
        return len(self.catalog.get(branch_id).all_symbols())

    def branch_confident_symbols(self, branch_id: str, stats: SymbolStatsStore) -> int:
        return len(stats.confident_symbols(self.catalog.get(branch_id).all_symbols()))

    def branches_with_progress(self) -> list[tuple[BranchDefinition, BranchProgress]]:
        return [(branch, self.progress.branches[branch.id]) for branch in self.catalog.branches]


__all__ = [
    "MASTERY_CONFIDENCE",
    "SkillTree",
    "default_progress",
]
