from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from database import get_db_connection
from market.types import PriceBar, PriceSeries


def _parse_ts(ts: str) -> datetime:
    # Accept Z or offset; tz-less stamps are UTC.
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@dataclass
class MarketFeed:
    """
    Preloaded bars for one symbol, read from the canonical `bars` table.

    The game engine never reads the database directly; it asks the feed for an
    immutable `PriceSeries`.
    """

    symbol: str
    timeframe: str
    bars: List[PriceBar]
    # Epoch-ms timestamps kept for bisect lookups.
    _t_ms: List[int] = field(default_factory=list, repr=False)

    @classmethod
    def from_bars_table(
        cls,
        *,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        timeframe: str = "1m",
        data_source: Optional[str] = None,
        db_path: Optional[str] = None,
    ) -> "MarketFeed":
        # Stored stamps may end in Z or +00:00; compare instants, not text.
        clauses = ["symbol = ?", "timeframe = ?"]
        params: List[object] = [symbol, timeframe]
        if start is not None:
            clauses.append("julianday(ts_start) >= julianday(?)")
            params.append(_iso(start))
        if end is not None:
            clauses.append("julianday(ts_start) <= julianday(?)")
            params.append(_iso(end))
        if data_source is not None:
            clauses.append("data_source = ?")
            params.append(data_source)

        conn = get_db_connection(db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT ts_start, open, high, low, close, COALESCE(volume, 0)
                FROM bars
                WHERE {' AND '.join(clauses)}
                ORDER BY julianday(ts_start) ASC
                """,
                tuple(params),
            )
            rows = cur.fetchall()
        finally:
            conn.close()

        bars: List[PriceBar] = []
        t_ms: List[int] = []
        for (ts, o, h, l, c, v) in rows:
            dt = _parse_ts(ts)
            bars.append(
                PriceBar(
                    ts=dt,
                    open=float(o),
                    high=float(h),
                    low=float(l),
                    close=float(c),
                    volume=float(v or 0.0),
                )
            )
            t_ms.append(int(dt.timestamp() * 1000))
        return cls(symbol=symbol, timeframe=timeframe, bars=bars, _t_ms=t_ms)

    def series(self) -> PriceSeries:
        return PriceSeries(self.bars, symbol=self.symbol)

    def index_for_ts(self, ts: datetime) -> Optional[int]:
        """Index of the bar stamped exactly `ts`, or None."""
        if not self._t_ms:
            return None
        t = int(_parse_ts(_iso(ts)).timestamp() * 1000)
        i = bisect.bisect_left(self._t_ms, t)
        if i < len(self._t_ms) and self._t_ms[i] == t:
            return i
        return None
