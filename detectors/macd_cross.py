from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from detectors.contracts import Detector, KeypointCandidate, KeypointCategory
from detectors.utils import macd, safe_mean
from errors import ConfigurationError
from market.types import PriceSeries
from utils import clamp

# Histogram deltas inspected before a cross.
_TREND_LOOKBACK = 4


@dataclass(frozen=True)
class MacdCrossConfig:
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9
    min_strength: float = 0.001
    trend_weight: float = 0.4
    volume_weight: float = 0.3

    def __post_init__(self) -> None:
        fast, slow, signal = int(self.fast_period), int(self.slow_period), int(self.signal_period)
        if not (0 < fast <= 50):
            raise ConfigurationError(f"fast_period must be in (0, 50], got {fast}")
        if not (fast < slow <= 100):
            raise ConfigurationError(f"slow_period must be in ({fast}, 100], got {slow}")
        if not (0 < signal <= 30):
            raise ConfigurationError(f"signal_period must be in (0, 30], got {signal}")
        if float(self.min_strength) < 0:
            raise ConfigurationError(f"min_strength must be >= 0, got {self.min_strength}")
        for name in ("trend_weight", "volume_weight"):
            v = float(getattr(self, name))
            if not (0.0 <= v <= 1.0):
                raise ConfigurationError(f"{name} must be in [0, 1], got {v}")


class MacdCrossDetector(Detector):
    """
    MACD histogram zero-line crosses. A golden cross fires when the histogram
    goes from <= 0 to > 0, a death cross from >= 0 to < 0.
    """

    name = "MacdCrossDetector"
    version = "1.0.0"
    description = "MACD golden/death crosses"
    priority = 8
    config_cls = MacdCrossConfig

    def min_data_points(self) -> int:
        return int(self.config.slow_period) + int(self.config.signal_period)

    def detect(self, series: PriceSeries, min_count: int = 0, max_count: int = 0, seed: int = 0) -> List[KeypointCandidate]:
        n = len(series)
        if n < self.min_data_points():
            return []

        cfg = self.config
        macd_line, signal_line, hist = macd(series.closes(), cfg.fast_period, cfg.slow_period, cfg.signal_period)
        volumes = series.volumes()
        avg_volume = safe_mean(volumes, default=1.0)
        if avg_volume <= 0:
            avg_volume = 1.0

        out: List[KeypointCandidate] = []
        for i in range(1, n):
            prev, cur = float(hist[i - 1]), float(hist[i])
            if prev <= 0 < cur:
                golden = True
            elif prev >= 0 > cur:
                golden = False
            else:
                continue
            strength = abs(cur)
            if strength < cfg.min_strength:
                continue

            base = min(1.0, strength * 1000.0)
            trend_bonus = self._trend_consistency(hist, i, golden) * cfg.trend_weight
            volume_bonus = max(0.0, min(0.3, (float(volumes[i]) / avg_volume - 1.0) * cfg.volume_weight))
            m = float(macd_line[i])
            position_bonus = 0.1 if (golden and m > 0) or (not golden and m < 0) else 0.0
            confidence = clamp(base + trend_bonus + volume_bonus + position_bonus)

            cross_type = "GOLDEN_CROSS" if golden else "DEATH_CROSS"
            out.append(
                KeypointCandidate(
                    frame_index=i,
                    confidence=confidence,
                    category=KeypointCategory.BULLISH_CROSS if golden else KeypointCategory.BEARISH_CROSS,
                    rationale=f"MACD {'golden' if golden else 'death'} cross (|hist|={strength:.4f})",
                    detector=self.name,
                    metadata={
                        "cross_type": cross_type,
                        "strength": strength,
                        "macd": m,
                        "signal": float(signal_line[i]),
                        "histogram": cur,
                    },
                )
            )
        return out

    @staticmethod
    def _trend_consistency(hist: np.ndarray, i: int, golden: bool) -> float:
        """Fraction of the histogram deltas leading into bar i that move with the cross."""
        if i <= _TREND_LOOKBACK:
            return 0.0
        agree = 0
        for j in range(i - _TREND_LOOKBACK, i):
            delta = float(hist[j] - hist[j - 1])
            if (golden and delta > 0) or (not golden and delta < 0):
                agree += 1
        return agree / float(_TREND_LOOKBACK)
