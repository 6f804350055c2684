from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
import sqlite3

from database import get_db_connection
from market.types import PriceBar, PriceSeries


@dataclass
class SyntheticBar:
    symbol: str
    timeframe: str
    ts_start: datetime
    duration_sec: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    data_source: str
    scenario: str

    def to_price_bar(self) -> PriceBar:
        return PriceBar(
            ts=self.ts_start,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
        )


def to_price_series(bars: Sequence[SyntheticBar]) -> PriceSeries:
    """Wrap generated bars as the immutable series the game engine consumes."""
    symbol = bars[0].symbol if bars else ""
    return PriceSeries([b.to_price_bar() for b in bars], symbol=symbol)


def write_synthetic_series_to_db(
    bars: Sequence[SyntheticBar],
    *,
    conn: sqlite3.Connection | None = None,
) -> None:
    """
    Persist a generated synthetic series into the `bars` table. Accepts an
    optional connection to make tests easier to isolate.
    """
    owns_conn = conn is None
    conn = conn or get_db_connection()

    try:
        cur = conn.cursor()
        cur.executemany(
            """
            INSERT OR IGNORE INTO bars (
                symbol, timeframe, ts_start, duration_sec,
                open, high, low, close, volume,
                data_source, scenario
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    bar.symbol,
                    bar.timeframe,
                    bar.ts_start.isoformat(),
                    bar.duration_sec,
                    bar.open,
                    bar.high,
                    bar.low,
                    bar.close,
                    bar.volume,
                    bar.data_source,
                    bar.scenario,
                )
                for bar in bars
            ],
        )
        conn.commit()
    finally:
        if owns_conn:
            conn.close()
