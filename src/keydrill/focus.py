"""Focus selection: weakest symbol plus worst confirmed pair anomaly."""

from __future__ import annotations

from .models import GLOBAL_SCOPE, FocusSelection
from .pair_stats import PairStatsStore
from .skill_tree import SkillTree
from .symbol_stats import SymbolStatsStore
from .symbols import display_name, format_pair


def select_focus(
    skill_tree: SkillTree,
    scope: str,
    symbol_stats: SymbolStatsStore,
    pair_stats: PairStatsStore,
) -> FocusSelection:
    """Compute both focus candidates independently.

    Confidence and anomaly percentage are different units, so no numeric
    comparison is made between them; ``FocusSelection.primary`` ranks a
    confirmed pair anomaly first.
    """
    char_focus = skill_tree.focused_symbol(scope, symbol_stats)
    unlocked = skill_tree.unlocked_symbols(scope)
    bigram_focus = pair_stats.worst_confirmed_anomaly(symbol_stats, allowed=unlocked)
    return FocusSelection(char_focus=char_focus, bigram_focus=bigram_focus)


def describe_focus(selection: FocusSelection) -> dict[str, object]:
    """JSON-friendly view of a focus selection."""
    primary = selection.primary()
    pair = selection.bigram_focus
    return {
        "char_focus": selection.char_focus,
        "char_focus_label": display_name(selection.char_focus) if selection.char_focus else None,
        "bigram_focus": None if pair is None else {
            "pair": "".join(pair.key),
            "label": format_pair(pair.key),
            "kind": pair.kind,
            "ratio": pair.ratio,
            "percent": pair.percent,
            "streak": pair.streak,
        },
        "primary": None if primary is None else {
            "kind": primary[0],
            "target": primary[1] if isinstance(primary[1], str) else "".join(primary[1]),
        },
    }


__all__ = [
    "GLOBAL_SCOPE",
    "describe_focus",
    "select_focus",
]
