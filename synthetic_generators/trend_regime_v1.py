from __future__ import annotations

import math
import random
from datetime import datetime, timedelta, timezone
from typing import List, Literal

from .base import SyntheticBar

Regime = Literal["UP", "DOWN", "CHOP"]

REGIMES: dict[Regime, dict[str, float]] = {
    "UP": {"drift": 0.0007, "vol": 0.0025, "volume_mult": 1.2},
    "DOWN": {"drift": -0.0007, "vol": 0.0025, "volume_mult": 1.2},
    "CHOP": {"drift": 0.0, "vol": 0.0015, "volume_mult": 0.8},
}


def generate_trend_regime_series(
    symbol: str,
    start_price: float,
    n_bars: int,
    *,
    timeframe: str = "1m",
    duration_sec: int = 60,
    scenario: str = "trend_regime_v1",
    start_ts: datetime | None = None,
    seed: int | None = None,
    stay_prob: float = 0.92,
) -> List[SyntheticBar]:
    """
    Generate a synthetic OHLCV series with a simple 3-regime model: UP, DOWN, CHOP.
    Regime switches give the detectors real turning points and MACD crosses.
    """
    if n_bars < 0:
        raise ValueError(f"n_bars must be >= 0, got {n_bars}")
    if start_price <= 0:
        raise ValueError(f"start_price must be > 0, got {start_price}")
    # Own RNG so concurrent generators never share state.
    rng = random.Random(seed)

    if start_ts is None:
        now = datetime.now(timezone.utc)
        start_ts = now.replace(second=0, microsecond=0)

    current_regime: Regime = "CHOP"
    price = float(start_price)
    bars: List[SyntheticBar] = []

    for i in range(n_bars):
        if rng.random() > stay_prob:
            candidates = [r for r in REGIMES.keys() if r != current_regime]
            current_regime = rng.choice(candidates)  # type: ignore[assignment]

        params = REGIMES[current_regime]

        ret = params["drift"] + params["vol"] * rng.gauss(0, 1)
        price_close = price * math.exp(ret)

        base_range = abs(ret) * price if abs(ret) > 0 else 0.001 * price
        extra = (0.5 + rng.random()) * params["vol"] * price
        bar_range = base_range + extra

        upper_wiggle = 0.3 * bar_range + rng.random() * 0.7 * bar_range
        lower_wiggle = 0.3 * bar_range + rng.random() * 0.7 * bar_range

        price_open = price
        price_high = max(price_open, price_close) + upper_wiggle
        price_low = min(price_open, price_close) - lower_wiggle

        volume = 1000.0 * params["volume_mult"] * rng.uniform(0.5, 1.5)

        bars.append(
            SyntheticBar(
                symbol=symbol,
                timeframe=timeframe,
                ts_start=start_ts + timedelta(seconds=i * duration_sec),
                duration_sec=duration_sec,
                open=price_open,
                high=price_high,
                low=price_low,
                close=price_close,
                volume=volume,
                data_source="synthetic",
                scenario=scenario,
            )
        )

        price = price_close

    return bars
