"""
Indicator helpers shared by detectors and scoring rules.
"""

from __future__ import annotations

import math

import numpy as np


def ema_sma_seeded(x: np.ndarray, period: int) -> np.ndarray:
    """
    Causal EMA whose first `period` values are the running SMA of x[0..i];
    after that the recursive EMA with k = 2/(p+1).
    """
    n = int(x.shape[0])
    p = max(1, int(period))
    k = 2.0 / (p + 1.0)
    out = np.zeros(n, dtype=np.float64)
    warm = min(p, n)
    total = 0.0
    for i in range(warm):
        total += float(x[i])
        out[i] = total / (i + 1)
    for i in range(warm, n):
        out[i] = float(x[i]) * k + out[i - 1] * (1.0 - k)
    return out


def macd(close: np.ndarray, fast: int, slow: int, signal: int):
    """Return (macd_line, signal_line, histogram) arrays aligned with `close`."""
    fast_ema = ema_sma_seeded(close, fast)
    slow_ema = ema_sma_seeded(close, slow)
    macd_line = fast_ema - slow_ema
    signal_line = ema_sma_seeded(macd_line, signal)
    return macd_line, signal_line, macd_line - signal_line


def safe_mean(x: np.ndarray, default: float = 0.0) -> float:
    if x.size == 0:
        return float(default)
    m = float(np.mean(x))
    return m if math.isfinite(m) else float(default)


def sma_last(x: np.ndarray, window: int) -> float:
    """Mean of the trailing `window` values (all values when fewer)."""
    w = max(1, int(window))
    return safe_mean(x[-w:])
