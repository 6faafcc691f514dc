"""Engine configuration: defaults, YAML file and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_TARGET_WPM = 35
CHARS_PER_WORD = 5

DEFAULT_TARGET_CPM = float(DEFAULT_TARGET_WPM * CHARS_PER_WORD)
EMA_ALPHA = 0.1
NEUTRAL_ERROR_RATE = 0.5
MAX_RECENT = 30

ANOMALY_FLOOR = 0.01
ERROR_ANOMALY_THRESHOLD = 1.5
SPEED_ANOMALY_THRESHOLD = 1.5
STREAK_REQUIRED = 3
STREAK_CAP = 255
MIN_PAIR_SAMPLES = 20
MIN_SYMBOL_SAMPLES_FOR_SPEED = 10

MAX_TRIGRAM_ENTRIES = 5000
PRUNE_RECENCY_WEIGHT = 0.3
PRUNE_SIGNAL_WEIGHT = 0.5
PRUNE_DATA_WEIGHT = 0.2
PRUNE_SIGNAL_CAP = 3.0

HESITATION_FLOOR_MS = 800.0
HESITATION_MULTIPLIER = 2.5
MEDIAN_WINDOW = 500

CONFIG_ENV_VAR = "KEYDRILL_CONFIG"


@dataclass(frozen=True, slots=True)
class EngineConfig:
    target_cpm: float = DEFAULT_TARGET_CPM
    ema_alpha: float = EMA_ALPHA
    neutral_error_rate: float = NEUTRAL_ERROR_RATE
    max_recent: int = MAX_RECENT
    anomaly_floor: float = ANOMALY_FLOOR
    error_anomaly_threshold: float = ERROR_ANOMALY_THRESHOLD
    speed_anomaly_threshold: float = SPEED_ANOMALY_THRESHOLD
    streak_required: int = STREAK_REQUIRED
    streak_cap: int = STREAK_CAP
    min_pair_samples: int = MIN_PAIR_SAMPLES
    min_symbol_samples_for_speed: int = MIN_SYMBOL_SAMPLES_FOR_SPEED
    max_trigram_entries: int = MAX_TRIGRAM_ENTRIES
    prune_recency_weight: float = PRUNE_RECENCY_WEIGHT
    prune_signal_weight: float = PRUNE_SIGNAL_WEIGHT
    prune_data_weight: float = PRUNE_DATA_WEIGHT
    prune_signal_cap: float = PRUNE_SIGNAL_CAP
    hesitation_floor_ms: float = HESITATION_FLOOR_MS
    hesitation_multiplier: float = HESITATION_MULTIPLIER
    median_window: int = MEDIAN_WINDOW

    @property
    def target_time_ms(self) -> float:
        """Milliseconds per symbol at the target speed."""
        return 60000.0 / self.target_cpm

    def validate(self) -> EngineConfig:
        if self.target_cpm <= 0:
            raise ValueError("target_cpm must be positive")
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValueError("ema_alpha must be in (0, 1]")
        if not 0.0 <= self.neutral_error_rate <= 1.0:
            raise ValueError("neutral_error_rate must be in [0, 1]")
        if self.anomaly_floor <= 0:
            raise ValueError("anomaly_floor must be positive")
        if self.streak_required < 1 or self.streak_cap < self.streak_required:
            raise ValueError("streak_cap must be >= streak_required >= 1")
        if self.max_recent < 1 or self.median_window < 1:
            raise ValueError("window sizes must be at least 1")
        return self


_FIELD_TYPES: dict[str, type] = {
    f.name: (int if f.type in ("int", int) else float) for f in fields(EngineConfig)
}


def config_from_mapping(values: dict[str, Any], base: EngineConfig | None = None) -> EngineConfig:
    """Apply a mapping of overrides on top of ``base`` (defaults if omitted)."""

    unknown = sorted(set(values) - set(_FIELD_TYPES))
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}")
    coerced = {name: _FIELD_TYPES[name](value) for name, value in values.items()}
    return replace(base or EngineConfig(), **coerced).validate()


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def load_config(path: Path | None = None) -> EngineConfig:
    """Defaults, then the YAML file (``path`` or ``$KEYDRILL_CONFIG``), then env vars."""

    config = EngineConfig()

    env_path = os.environ.get(CONFIG_ENV_VAR)
    file_path = path or (Path(env_path) if env_path else None)
    if file_path is not None:
        with open(file_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must be a mapping: {file_path}")
        config = config_from_mapping(raw, config)

    wpm = _env_float("KEYDRILL_TARGET_WPM")
    if wpm is not None and wpm > 0:
        config = replace(config, target_cpm=wpm * CHARS_PER_WORD)
    cpm = _env_float("KEYDRILL_TARGET_CPM")
    if cpm is not None and cpm > 0:
        config = replace(config, target_cpm=cpm)

    return config.validate()


__all__ = [
    "ANOMALY_FLOOR",
    "DEFAULT_TARGET_CPM",
    "DEFAULT_TARGET_WPM",
    "EMA_ALPHA",
    "ERROR_ANOMALY_THRESHOLD",
    "EngineConfig",
    "HESITATION_FLOOR_MS",
    "HESITATION_MULTIPLIER",
    "MAX_TRIGRAM_ENTRIES",
    "MIN_PAIR_SAMPLES",
    "MIN_SYMBOL_SAMPLES_FOR_SPEED",
    "NEUTRAL_ERROR_RATE",
    "SPEED_ANOMALY_THRESHOLD",
    "STREAK_CAP",
    "STREAK_REQUIRED",
    "config_from_mapping",
    "load_config",
]
