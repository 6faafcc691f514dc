"""Bigram/trigram statistics: error and speed anomalies with stability gating.

Two independent signals are tracked per pair:

* error anomaly: the pair's error EMA against the rate expected if its parts
  failed independently (for trigrams, also against the rates of its two
  constituent bigrams). ratio = observed / max(expected, floor).
* speed anomaly: the pair's transition time against the same symbols typed in
  isolation. Undefined (None) until those symbols have a settled baseline.

An anomaly is *confirmed* only after its streak of consecutive qualifying
checks reaches ``streak_required`` and the pair has ``min_pair_samples``.
An undefined speed check holds the streak where it is.
"""

from __future__ import annotations

import math
from typing import Iterable

from .config import EngineConfig
from .models import AnomalyKind, PairAnomaly, PairKey, PairStat
from .symbol_stats import SymbolStatsStore, ema, laplace_rate


def anomaly_percent(ratio: float) -> float:
    return (ratio - 1.0) * 100.0


class PairStatsStore:
    """Statistics for ordered symbol pairs of a fixed order (2 or 3)."""

    def __init__(
        self,
        order: int,
        config: EngineConfig | None = None,
        stats: dict[PairKey, PairStat] | None = None,
    ) -> None:
        if order not in (2, 3):
            raise ValueError(f"Unsupported pair order: {order}")
        self.order = order
        self.config = config or EngineConfig()
        self.stats: dict[PairKey, PairStat] = stats if stats is not None else {}

    def __len__(self) -> int:
        return len(self.stats)

    def __contains__(self, key: object) -> bool:
        return key in self.stats

    def _key(self, key: Iterable[str]) -> PairKey:
        normalized = tuple(key)
        if len(normalized) != self.order:
            raise ValueError(f"Expected a {self.order}-symbol key, got {normalized!r}")
        return normalized

    @property
    def target_time_ms(self) -> float:
        # One symbol target per symbol in the window.
        return self.order * self.config.target_time_ms

    # ── Updates ──────────────────────────────────────────────────────────────

    def update(
        self,
        key: Iterable[str],
        time_ms: float,
        correct: bool,
        hesitation: bool,
        session_index: int,
    ) -> PairStat:
        key = self._key(key)
        alpha = self.config.ema_alpha
        stat = self.stats.setdefault(key, PairStat(error_rate_ema=self.config.neutral_error_rate))
        stat.last_seen_index = session_index
        stat.sample_count += 1
        if not correct:
            stat.error_count += 1
        if hesitation:
            stat.hesitation_count += 1

        if stat.sample_count == 1:
            stat.filtered_time_ms = time_ms
            stat.error_rate_ema = 0.0 if correct else 1.0
        else:
            stat.filtered_time_ms = ema(stat.filtered_time_ms, time_ms, alpha)
            stat.error_rate_ema = ema(stat.error_rate_ema, 0.0 if correct else 1.0, alpha)

        stat.best_time_ms = min(stat.best_time_ms, stat.filtered_time_ms)
        if stat.filtered_time_ms > 0:
            stat.confidence = self.target_time_ms / stat.filtered_time_ms

        stat.recent_times.append(time_ms)
        if len(stat.recent_times) > self.config.max_recent:
            del stat.recent_times[0]
        stat.recent_correct.append(correct)
        if len(stat.recent_correct) > self.config.max_recent:
            del stat.recent_correct[0]
        return stat

    def update_anomaly_streaks(
        self,
        key: Iterable[str],
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> None:
        """Run one stability check for ``key``. Call once per session the pair was seen in."""
        key = self._key(key)
        stat = self.stats.get(key)
        if stat is None:
            return

        error_ratio = self.error_anomaly_ratio(key, symbol_stats, sub_pairs)
        if error_ratio > self.config.error_anomaly_threshold:
            stat.error_anomaly_streak = self._bump(stat.error_anomaly_streak)
        else:
            stat.error_anomaly_streak = 0

        speed_ratio = self.speed_anomaly_ratio(key, symbol_stats)
        if speed_ratio is None:
            pass  # no baseline yet: hold
        elif speed_ratio > self.config.speed_anomaly_threshold:
            stat.speed_anomaly_streak = self._bump(stat.speed_anomaly_streak)
        else:
            stat.speed_anomaly_streak = 0

    def _bump(self, streak: int) -> int:
        return min(self.config.streak_cap, streak + 1)

    # ── Queries ──────────────────────────────────────────────────────────────

    def get(self, key: Iterable[str]) -> PairStat | None:
        return self.stats.get(self._key(key))

    def get_confidence(self, key: Iterable[str]) -> float:
        stat = self.get(key)
        return stat.confidence if stat is not None else 0.0

    def smoothed_error_rate(self, key: Iterable[str]) -> float:
        stat = self.get(key)
        if stat is None:
            return self.config.neutral_error_rate
        return stat.error_rate_ema

    def laplace_error_rate(self, key: Iterable[str]) -> float:
        stat = self.get(key)
        if stat is None:
            return laplace_rate(0, 0)
        return laplace_rate(stat.error_count, stat.sample_count)

    def expected_error_rate(
        self,
        key: Iterable[str],
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> float:
        """Error rate explained by the parts: 1 - prod(1 - e_i), and for trigrams the worse sub-pair."""
        key = self._key(key)
        survive = 1.0
        for symbol in key:
            survive *= 1.0 - symbol_stats.smoothed_error_rate(symbol)
        expected = 1.0 - survive

        if self.order == 3:
            if sub_pairs is None or sub_pairs.order != 2:
                raise ValueError("Trigram expectations need the bigram store")
            from_pairs = max(
                sub_pairs.smoothed_error_rate(key[:2]),
                sub_pairs.smoothed_error_rate(key[1:]),
            )
            expected = max(expected, from_pairs)
        return expected

    def error_anomaly_ratio(
        self,
        key: Iterable[str],
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> float:
        key = self._key(key)
        expected = self.expected_error_rate(key, symbol_stats, sub_pairs)
        return self.smoothed_error_rate(key) / max(expected, self.config.anomaly_floor)

    def error_anomaly_percent(
        self,
        key: Iterable[str],
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> float:
        return anomaly_percent(self.error_anomaly_ratio(key, symbol_stats, sub_pairs))

    def speed_anomaly_ratio(self, key: Iterable[str], symbol_stats: SymbolStatsStore) -> float | None:
        """Pair transition time over the isolated time of every symbol after the first.

        None means unknown, not "no anomaly".
        """
        stat = self.get(key)
        if stat is None or stat.sample_count == 0:
            return None
        baseline = 0.0
        for symbol in tuple(key)[1:]:
            symbol_stat = symbol_stats.get(symbol)
            if symbol_stat is None or symbol_stat.sample_count < self.config.min_symbol_samples_for_speed:
                return None
            baseline += symbol_stat.filtered_time_ms
        if baseline <= 0:
            return None
        return stat.filtered_time_ms / baseline

    def speed_anomaly_percent(self, key: Iterable[str], symbol_stats: SymbolStatsStore) -> float | None:
        ratio = self.speed_anomaly_ratio(key, symbol_stats)
        return None if ratio is None else anomaly_percent(ratio)

    def evaluate(
        self,
        key: Iterable[str],
        kind: AnomalyKind,
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> PairAnomaly | None:
        """The confirmed anomaly of ``kind`` for ``key``, or None if not confirmed."""
        key = self._key(key)
        stat = self.stats.get(key)
        if stat is None or stat.sample_count < self.config.min_pair_samples:
            return None

        if kind == "error":
            streak = stat.error_anomaly_streak
            ratio: float | None = self.error_anomaly_ratio(key, symbol_stats, sub_pairs)
            threshold = self.config.error_anomaly_threshold
        else:
            streak = stat.speed_anomaly_streak
            ratio = self.speed_anomaly_ratio(key, symbol_stats)
            threshold = self.config.speed_anomaly_threshold

        if streak < self.config.streak_required or ratio is None or ratio <= threshold:
            return None
        return PairAnomaly(key=key, kind=kind, ratio=ratio, percent=anomaly_percent(ratio), streak=streak)

    def is_confirmed(
        self,
        key: Iterable[str],
        kind: AnomalyKind,
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> bool:
        return self.evaluate(key, kind, symbol_stats, sub_pairs) is not None

    def confirmed_anomalies(
        self,
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
        allowed: Iterable[str] | None = None,
    ) -> list[PairAnomaly]:
        """One entry per confirmed pair, worst first.

        A pair confirmed on both axes keeps the higher percentage; the error
        axis wins ties.
        """
        allowed_set = set(allowed) if allowed is not None else None
        result: list[PairAnomaly] = []
        for key in sorted(self.stats):
            if allowed_set is not None and not all(symbol in allowed_set for symbol in key):
                continue
            error = self.evaluate(key, "error", symbol_stats, sub_pairs)
            speed = self.evaluate(key, "speed", symbol_stats, sub_pairs)
            best = error if error is not None else speed
            if error is not None and speed is not None and speed.percent > error.percent:
                best = speed
            if best is not None:
                result.append(best)
        result.sort(key=lambda anomaly: (-anomaly.percent, anomaly.key))
        return result

    def worst_confirmed_anomaly(
        self,
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
        allowed: Iterable[str] | None = None,
    ) -> PairAnomaly | None:
        anomalies = self.confirmed_anomalies(symbol_stats, sub_pairs, allowed)
        return anomalies[0] if anomalies else None

    # ── Pruning ──────────────────────────────────────────────────────────────

    def prune(
        self,
        max_entries: int,
        current_index: int,
        symbol_stats: SymbolStatsStore,
        sub_pairs: PairStatsStore | None = None,
    ) -> int:
        """Drop the lowest-utility entries until at most ``max_entries`` remain.

        Utility favours recently seen pairs, strong anomaly signal (capped) and
        sample volume (log), so rare but informative pairs survive frequent
        unremarkable ones. Returns the number of entries removed.
        """
        if len(self.stats) <= max_entries:
            return 0

        cfg = self.config
        scored: list[tuple[float, PairKey]] = []
        for key, stat in self.stats.items():
            sessions_since = max(0, current_index - stat.last_seen_index)
            recency = 1.0 / (sessions_since + 1.0)
            signal = min(self.error_anomaly_ratio(key, symbol_stats, sub_pairs), cfg.prune_signal_cap)
            data = math.log1p(stat.sample_count)
            utility = (
                cfg.prune_recency_weight * recency
                + cfg.prune_signal_weight * signal
                + cfg.prune_data_weight * data
            )
            scored.append((utility, key))

        scored.sort(key=lambda item: (-item[0], item[1]))
        keep = {key for _, key in scored[:max_entries]}
        removed = len(self.stats) - len(keep)
        self.stats = {key: stat for key, stat in self.stats.items() if key in keep}
        return removed


def trigram_marginal_gain(
    trigrams: PairStatsStore,
    bigrams: PairStatsStore,
    symbol_stats: SymbolStatsStore,
) -> float:
    """Share of well-sampled trigrams whose errors are not explained by their parts."""
    qualified = [
        key for key, stat in trigrams.stats.items()
        if stat.sample_count >= trigrams.config.min_pair_samples
    ]
    if not qualified:
        return 0.0
    with_signal = sum(
        1 for key in qualified
        if trigrams.error_anomaly_ratio(key, symbol_stats, bigrams) > trigrams.config.error_anomaly_threshold
    )
    return with_signal / len(qualified)


__all__ = [
    "PairStatsStore",
    "anomaly_percent",
    "trigram_marginal_gain",
]
