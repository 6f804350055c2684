#!/usr/bin/env python
"""
Smoke test for the keypoint trading game engine.

This does NOT start any server. It:
- Generates a synthetic series (or loads one from the `bars` table with --from-db)
- Creates a game from detected keypoints
- Plays every frame with a naive contrarian policy
- Prints the session summary and event counts
"""

from __future__ import annotations

import argparse
import dataclasses
import json
from collections import Counter
from datetime import datetime, timezone

from database import get_db_connection, init_database
from game.events import MemoryEventLog, SqliteEventLog
from game.service import GameService
from game.settings import configure_logging, load_settings
from game.store import InMemorySessionStore, SqliteSessionStore
from game.types import DecisionType
from market.feed import MarketFeed
from synthetic_generators import get_generator, to_price_series, write_synthetic_series_to_db


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Play one keypoint game end to end.")
    p.add_argument("--symbol", default="SYNTH")
    p.add_argument("--bars", type=int, default=240)
    p.add_argument("--start-price", type=float, default=100.0)
    p.add_argument("--seed", type=int, default=7)
    p.add_argument("--generator", default="trend_regime_v1")
    p.add_argument("--from-db", action="store_true", help="write the series to SQLite and read it back via MarketFeed")
    p.add_argument("--persist", action="store_true", help="use the SQLite session store and event log")
    p.add_argument("--async-scoring", action="store_true")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level.upper())
    settings = load_settings()
    if args.async_scoring:
        settings = dataclasses.replace(settings, async_scoring=True)

    generate = get_generator(args.generator)
    bars = generate(
        args.symbol,
        args.start_price,
        args.bars,
        seed=args.seed,
        start_ts=datetime(2025, 1, 2, 14, 30, tzinfo=timezone.utc),
    )

    if args.from_db or args.persist:
        init_database(settings.db_path)
    if args.from_db:
        conn = get_db_connection(settings.db_path)
        try:
            write_synthetic_series_to_db(bars, conn=conn)
        finally:
            conn.close()
        series = MarketFeed.from_bars_table(symbol=args.symbol, data_source="synthetic", db_path=settings.db_path).series()
    else:
        series = to_price_series(bars)

    if args.persist:
        store, event_log = SqliteSessionStore(settings.db_path), SqliteEventLog(settings.db_path)
    else:
        store, event_log = InMemorySessionStore(), MemoryEventLog()

    service = GameService(store=store, settings=settings, event_log=event_log)
    try:
        session = service.create_game(series, seed=args.seed)
        service.start(session.id)
        closes = series.closes()
        for frame, bar_idx in enumerate(session.keypoints):
            # Fade the last 5 bars; sit out when flat.
            lookback = closes[max(0, bar_idx - 5)]
            price = float(closes[bar_idx])
            if price < lookback:
                service.submit_decision(session.id, frame, DecisionType.LONG, price=price, response_time_ms=800 + frame)
            elif price > lookback:
                service.submit_decision(session.id, frame, DecisionType.SHORT, price=price, response_time_ms=900 + frame)
            else:
                service.submit_decision(session.id, frame, DecisionType.SKIP, response_time_ms=500)
        service.wait_for_pending(timeout=10)
        final = service.get_session(session.id)
    finally:
        service.shutdown()

    print(json.dumps(final.summary(), indent=2, sort_keys=True))
    counts = Counter(e.event_type for e in event_log.events(session_id=final.id))
    print("events:", dict(sorted(counts.items())))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
