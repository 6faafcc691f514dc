"""Adaptive typing-practice mastery engine.

Tracks per-symbol and per-pair timing and error statistics, gates skill-tree
progression on confidence, and picks what the next session should focus on.
"""

from .config import EngineConfig, load_config
from .engine import MasteryEngine, SessionOutcome
from .models import FocusSelection, KeyTime, PairAnomaly, SkillTreeChanges

__all__ = [
    "EngineConfig",
    "FocusSelection",
    "KeyTime",
    "MasteryEngine",
    "PairAnomaly",
    "SessionOutcome",
    "SkillTreeChanges",
    "load_config",
]
