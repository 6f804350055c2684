from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence, Tuple, Union, overload

import numpy as np
import pandas as pd

# Minimal bar contract for DataFrame inputs.
REQUIRED_BAR_COLUMNS: Tuple[str, ...] = ("open", "high", "low", "close", "volume")


def _as_utc(ts) -> datetime:
    if isinstance(ts, pd.Timestamp):
        ts = ts.to_pydatetime()
    if not isinstance(ts, datetime):
        ts = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class PriceBar:
    """
    One OHLCV bar of the replayed series. Times are UTC datetimes.
    Read-only to the game engine.
    """

    ts: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def range_pct(self) -> float:
        """Intrabar range relative to the open, in percent."""
        if self.open == 0:
            return 0.0
        return (self.high - self.low) / self.open * 100.0


def validate_bars_df(df_prices: pd.DataFrame) -> None:
    """Raise ValueError if the input bars DataFrame violates the minimal contract."""
    if df_prices is None or df_prices.empty:
        raise ValueError("df_prices is empty")
    missing = [c for c in REQUIRED_BAR_COLUMNS if c not in df_prices.columns]
    if missing:
        raise ValueError(f"df_prices missing required columns: {missing}")


class PriceSeries:
    """
    Immutable, ordered bar sequence for one instrument.

    Detectors and scoring rules only ever see this type (or slices of it), so
    they can run concurrently against the same instance.
    """

    __slots__ = ("symbol", "_bars")

    def __init__(self, bars: Sequence[PriceBar], symbol: str = ""):
        self.symbol = str(symbol)
        self._bars: Tuple[PriceBar, ...] = tuple(bars)

    @classmethod
    def from_frame(cls, df_prices: pd.DataFrame, symbol: str = "") -> "PriceSeries":
        """
        Build a series from a bars DataFrame. Timestamps come from a `ts` column
        when present, otherwise from the index.
        """
        validate_bars_df(df_prices)
        df = df_prices.copy()
        if "ts" in df.columns:
            stamps = pd.to_datetime(df["ts"], utc=True)
        else:
            stamps = pd.to_datetime(df.index, utc=True)
        bars: List[PriceBar] = []
        for ts, o, h, l, c, v in zip(
            stamps,
            df["open"].astype(float),
            df["high"].astype(float),
            df["low"].astype(float),
            df["close"].astype(float),
            df["volume"].fillna(0.0).astype(float),
        ):
            bars.append(PriceBar(ts=_as_utc(ts), open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v)))
        return cls(bars, symbol=symbol)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(
            {
                "open": [b.open for b in self._bars],
                "high": [b.high for b in self._bars],
                "low": [b.low for b in self._bars],
                "close": [b.close for b in self._bars],
                "volume": [b.volume for b in self._bars],
            },
            index=pd.to_datetime([b.ts for b in self._bars], utc=True),
        )
        df.index.name = "ts"
        return df

    @property
    def bars(self) -> Tuple[PriceBar, ...]:
        return self._bars

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[PriceBar]:
        return iter(self._bars)

    @overload
    def __getitem__(self, idx: int) -> PriceBar: ...

    @overload
    def __getitem__(self, idx: slice) -> "PriceSeries": ...

    def __getitem__(self, idx: Union[int, slice]):
        if isinstance(idx, slice):
            return PriceSeries(self._bars[idx], symbol=self.symbol)
        return self._bars[idx]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PriceSeries):
            return NotImplemented
        return self.symbol == other.symbol and self._bars == other._bars

    def __hash__(self) -> int:
        return hash((self.symbol, self._bars))

    def __repr__(self) -> str:
        return f"PriceSeries(symbol={self.symbol!r}, n={len(self._bars)})"

    # Column views (fresh arrays; the series itself never changes).
    def opens(self) -> np.ndarray:
        return np.array([b.open for b in self._bars], dtype=np.float64)

    def highs(self) -> np.ndarray:
        return np.array([b.high for b in self._bars], dtype=np.float64)

    def lows(self) -> np.ndarray:
        return np.array([b.low for b in self._bars], dtype=np.float64)

    def closes(self) -> np.ndarray:
        return np.array([b.close for b in self._bars], dtype=np.float64)

    def volumes(self) -> np.ndarray:
        return np.array([b.volume for b in self._bars], dtype=np.float64)

    def window(self, start: int, end_exclusive: int) -> "PriceSeries":
        lo = max(0, int(start))
        hi = min(len(self._bars), max(lo, int(end_exclusive)))
        return PriceSeries(self._bars[lo:hi], symbol=self.symbol)

    def historical_window(self, idx: int, lookback: Optional[int] = None) -> "PriceSeries":
        """Bars up to and including `idx` (the decision bar), at most `lookback` of them."""
        end = int(idx) + 1
        start = 0 if lookback is None else end - max(1, int(lookback))
        return self.window(start, end)

    def future_window(self, idx: int, horizon: Optional[int] = None) -> "PriceSeries":
        """Bars strictly after `idx`, at most `horizon` of them."""
        start = int(idx) + 1
        end = len(self._bars) if horizon is None else start + max(0, int(horizon))
        return self.window(start, end)
