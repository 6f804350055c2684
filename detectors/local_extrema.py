from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np

from detectors.contracts import Detector, KeypointCandidate, KeypointCategory
from detectors.utils import safe_mean
from errors import ConfigurationError
from market.types import PriceBar, PriceSeries
from utils import clamp


@dataclass(frozen=True)
class LocalExtremaConfig:
    window_size: int = 5
    min_significance: float = 0.01
    volume_weight: float = 0.3
    volatility_weight: float = 0.2

    def __post_init__(self) -> None:
        if not (1 <= int(self.window_size) <= 20):
            raise ConfigurationError(f"window_size must be in [1, 20], got {self.window_size}")
        if not (0.0 <= float(self.min_significance) <= 1.0):
            raise ConfigurationError(f"min_significance must be in [0, 1], got {self.min_significance}")
        for name in ("volume_weight", "volatility_weight"):
            v = float(getattr(self, name))
            if not (0.0 <= v <= 1.0):
                raise ConfigurationError(f"{name} must be in [0, 1], got {v}")


class LocalExtremaDetector(Detector):
    """
    Flags bars whose high (low) is strictly above (below) every other bar within
    `window_size` bars on each side, provided the extreme stands out from the
    neighbourhood mean by at least `min_significance`.
    """

    name = "LocalExtremaDetector"
    version = "1.0.0"
    description = "Local high/low turning points"
    priority = 10
    config_cls = LocalExtremaConfig

    def min_data_points(self) -> int:
        return 2 * int(self.config.window_size) + 1

    def detect(self, series: PriceSeries, min_count: int = 0, max_count: int = 0, seed: int = 0) -> List[KeypointCandidate]:
        n = len(series)
        if n < self.min_data_points():
            return []

        w = int(self.config.window_size)
        highs = series.highs()
        lows = series.lows()
        avg_volume = safe_mean(series.volumes(), default=1.0)
        if avg_volume <= 0:
            avg_volume = 1.0

        out: List[KeypointCandidate] = []
        for i in range(w, n - w):
            bar = series[i]
            if self._is_extreme(highs, i, w, high=True):
                sig = self._significance(highs, i, w)
                if sig >= self.config.min_significance:
                    out.append(self._candidate(i, bar, sig, avg_volume, KeypointCategory.LOCAL_HIGH))
            if self._is_extreme(lows, i, w, high=False):
                sig = self._significance(lows, i, w)
                if sig >= self.config.min_significance:
                    out.append(self._candidate(i, bar, sig, avg_volume, KeypointCategory.LOCAL_LOW))
        return out

    @staticmethod
    def _is_extreme(values: np.ndarray, i: int, w: int, *, high: bool) -> bool:
        centre = values[i]
        neighbours = np.concatenate([values[i - w : i], values[i + 1 : i + w + 1]])
        # Ties disqualify.
        if high:
            return bool(np.all(neighbours < centre))
        return bool(np.all(neighbours > centre))

    @staticmethod
    def _significance(values: np.ndarray, i: int, w: int) -> float:
        lo = max(0, i - w)
        hi = min(values.shape[0], i + w + 1)
        neighbours = np.concatenate([values[lo:i], values[i + 1 : hi]])
        mean = safe_mean(neighbours)
        if neighbours.size == 0 or mean == 0:
            return 0.0
        return abs(float(values[i]) - mean) / mean

    def _candidate(
        self,
        i: int,
        bar: PriceBar,
        significance: float,
        avg_volume: float,
        category: KeypointCategory,
    ) -> KeypointCandidate:
        base = min(1.0, significance * 10.0)
        volume_bonus = min(0.3, (bar.volume / avg_volume) * self.config.volume_weight)
        volatility_bonus = min(0.2, (bar.range_pct / 100.0) * self.config.volatility_weight)
        confidence = clamp(base + volume_bonus + volatility_bonus)

        metadata: Dict[str, Any] = {
            "significance": significance,
            "price": bar.close,
            "volume": bar.volume,
            "volatility": bar.range_pct,
            "detection_type": category.value,
            "timestamp": bar.ts.isoformat(),
        }
        label = "local high" if category is KeypointCategory.LOCAL_HIGH else "local low"
        return KeypointCandidate(
            frame_index=i,
            confidence=confidence,
            category=category,
            rationale=f"{label} ({significance:.2%} from {self.config.window_size}-bar neighbourhood)",
            detector=self.name,
            metadata=metadata,
        )
