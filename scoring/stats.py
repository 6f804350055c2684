"""
Risk statistics over the first `window` bars of a future window.

All helpers read closes only and return 0.0 when fewer than two bars are
available.
"""

from __future__ import annotations

import math

import numpy as np

from detectors.utils import sma_last
from market.types import PriceSeries


def _head_closes(bars: PriceSeries, window: int) -> np.ndarray:
    n = min(max(0, int(window)), len(bars))
    return bars.closes()[:n]


def returns(bars: PriceSeries, window: int) -> np.ndarray:
    """Bar-over-bar close returns within the window."""
    c = _head_closes(bars, window)
    if c.shape[0] < 2:
        return np.zeros(0, dtype=np.float64)
    prev = c[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.where(prev != 0, (c[1:] - prev) / prev, 0.0)
    return r.astype(np.float64)


def volatility(bars: PriceSeries, window: int) -> float:
    """Population standard deviation of returns."""
    r = returns(bars, window)
    if r.size == 0:
        return 0.0
    return float(np.std(r))


def max_drawdown(bars: PriceSeries, window: int) -> float:
    """Largest peak-to-trough decline as a fraction of the running peak."""
    c = _head_closes(bars, window)
    if c.shape[0] < 2:
        return 0.0
    peak = float(c[0])
    worst = 0.0
    for price in c[1:]:
        p = float(price)
        if p > peak:
            peak = p
        if peak > 0:
            worst = max(worst, (peak - p) / peak)
    return worst


def downside_deviation(bars: PriceSeries, window: int) -> float:
    """Root mean square of the negative returns (semi-deviation about zero)."""
    r = returns(bars, window)
    neg = r[r < 0]
    if neg.size == 0:
        return 0.0
    return float(math.sqrt(float(np.mean(neg * neg))))


def momentum(historical: PriceSeries, lookback: int = 10) -> float:
    """Change from the close `lookback` bars back (inclusive) to the last close."""
    if len(historical) < lookback:
        return 0.0
    c = historical.closes()
    past = float(c[-lookback])
    if past == 0:
        return 0.0
    return (float(c[-1]) - past) / past


def mean_reversion(historical: PriceSeries, period: int = 20) -> float:
    """Deviation of the last close from its `period`-bar SMA."""
    if len(historical) < period:
        return 0.0
    c = historical.closes()
    ma = sma_last(c, period)
    if ma == 0:
        return 0.0
    return (float(c[-1]) - ma) / ma
