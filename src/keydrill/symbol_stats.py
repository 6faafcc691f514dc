"""Per-symbol timing and error statistics (EMA-filtered) and confidence."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Literal

from .config import EngineConfig
from .models import SymbolStat

Trend = Literal["improving", "steady", "slowing"]

TREND_MIN_POINTS = 3
TREND_MIN_R_SQUARED = 0.5
TREND_CHANGE_PCT = 5.0


def ema(previous: float, sample: float, alpha: float) -> float:
    return alpha * sample + (1.0 - alpha) * previous


def laplace_rate(errors: int, total: int) -> float:
    """Laplace-smoothed error rate: (errors + 1) / (total + 2), strictly inside (0, 1)."""
    return (errors + 1.0) / (total + 2.0)


class SymbolStatsStore:
    """Lazily-created ``SymbolStat`` entries keyed by symbol."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        stats: dict[str, SymbolStat] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.stats: dict[str, SymbolStat] = stats if stats is not None else {}

    def __len__(self) -> int:
        return len(self.stats)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.stats

    def update_correct(self, symbol: str, time_ms: float) -> SymbolStat:
        """Record a correctly typed symbol taking ``time_ms``."""
        alpha = self.config.ema_alpha
        stat = self.stats.setdefault(symbol, SymbolStat(error_rate_ema=self.config.neutral_error_rate))
        stat.sample_count += 1
        stat.total_count += 1

        if stat.sample_count == 1:
            stat.filtered_time_ms = time_ms
        else:
            stat.filtered_time_ms = ema(stat.filtered_time_ms, time_ms, alpha)

        stat.best_time_ms = min(stat.best_time_ms, stat.filtered_time_ms)
        stat.confidence = self._confidence(stat.filtered_time_ms)

        stat.recent_times.append(time_ms)
        if len(stat.recent_times) > self.config.max_recent:
            del stat.recent_times[0]

        if stat.total_count == 1:
            stat.error_rate_ema = 0.0
        else:
            stat.error_rate_ema = ema(stat.error_rate_ema, 0.0, alpha)
        return stat

    def update_error(self, symbol: str) -> SymbolStat:
        """Record a mistyped symbol. Timing is untouched: a wrong key has no valid time."""
        stat = self.stats.setdefault(symbol, SymbolStat(error_rate_ema=self.config.neutral_error_rate))
        stat.error_count += 1
        stat.total_count += 1

        if stat.total_count == 1:
            stat.error_rate_ema = 1.0
        else:
            stat.error_rate_ema = ema(stat.error_rate_ema, 1.0, self.config.ema_alpha)
        return stat

    def get(self, symbol: str) -> SymbolStat | None:
        """The stat for ``symbol``, or None if it has never been observed."""
        return self.stats.get(symbol)

    def is_practiced(self, symbol: str) -> bool:
        stat = self.stats.get(symbol)
        return stat is not None and stat.sample_count > 0

    def get_confidence(self, symbol: str) -> float:
        stat = self.stats.get(symbol)
        return stat.confidence if stat is not None else 0.0

    def smoothed_error_rate(self, symbol: str) -> float:
        stat = self.stats.get(symbol)
        if stat is None:
            return self.config.neutral_error_rate
        return stat.error_rate_ema

    def laplace_error_rate(self, symbol: str) -> float:
        stat = self.stats.get(symbol)
        if stat is None:
            return laplace_rate(0, 0)
        return laplace_rate(stat.error_count, stat.total_count)

    def confident_symbols(self, symbols: Iterable[str]) -> list[str]:
        return [symbol for symbol in symbols if self.get_confidence(symbol) >= 1.0]

    def set_target_cpm(self, target_cpm: float) -> None:
        """Retarget and recompute every stored confidence."""
        self.config = replace(self.config, target_cpm=target_cpm).validate()
        for stat in self.stats.values():
            if stat.sample_count > 0:
                stat.confidence = self._confidence(stat.filtered_time_ms)

    def _confidence(self, filtered_time_ms: float) -> float:
        if filtered_time_ms <= 0:
            return 0.0
        return self.config.target_time_ms / filtered_time_ms


def learning_trend(times: list[float]) -> Trend | None:
    """Classify a run of recent times with a least-squares line.

    Returns None when there are fewer than three points, the data is flat, or
    the fit is too weak (r^2 < 0.5) to say anything.
    """
    n = len(times)
    if n < TREND_MIN_POINTS:
        return None

    x_mean = (n - 1) / 2.0
    y_mean = sum(times) / n
    ss_xy = ss_xx = ss_yy = 0.0
    for i, y in enumerate(times):
        dx = i - x_mean
        dy = y - y_mean
        ss_xy += dx * dy
        ss_xx += dx * dx
        ss_yy += dy * dy

    if ss_xx < 1e-10 or ss_yy < 1e-10:
        return None
    r_squared = (ss_xy * ss_xy) / (ss_xx * ss_yy)
    if r_squared < TREND_MIN_R_SQUARED:
        return None

    slope = ss_xy / ss_xx
    predicted_next = max(0.0, y_mean + slope * (n - x_mean))
    current = times[-1]
    if current <= 0:
        return None
    improvement = (current - predicted_next) / current * 100.0
    if improvement > TREND_CHANGE_PCT:
        return "improving"
    if improvement < -TREND_CHANGE_PCT:
        return "slowing"
    return "steady"


__all__ = [
    "SymbolStatsStore",
    "Trend",
    "ema",
    "laplace_rate",
    "learning_trend",
]
