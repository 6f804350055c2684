import unittest
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from detectors import (
    DETECTOR_REGISTRY,
    KeypointCandidate,
    KeypointCategory,
    LocalExtremaConfig,
    LocalExtremaDetector,
    MacdCrossConfig,
    MacdCrossDetector,
    build_detectors,
)
from detectors.utils import ema_sma_seeded, macd
from errors import ConfigurationError
from market.types import PriceBar, PriceSeries


def _series_from_closes(closes, *, spread=0.5, volume=1000.0, highs=None, lows=None) -> PriceSeries:
    start = datetime(2025, 1, 1, 14, 30, tzinfo=timezone.utc)
    bars = []
    for i, c in enumerate(closes):
        hi = highs[i] if highs is not None else c + spread
        lo = lows[i] if lows is not None else c - spread
        bars.append(PriceBar(ts=start + timedelta(minutes=i), open=c, high=hi, low=lo, close=c, volume=volume))
    return PriceSeries(bars, symbol="TEST")


def _spike_series(n: int = 60, spike_at: int = 30) -> PriceSeries:
    closes = [100.0] * n
    highs = [100.5] * n
    lows = [99.5] * n
    closes[spike_at] = 109.0
    highs[spike_at] = 110.0
    return _series_from_closes(closes, highs=highs, lows=lows)


class LocalExtremaTests(unittest.TestCase):
    def test_single_spike_is_the_only_local_high(self):
        det = LocalExtremaDetector()
        found = det.detect(_spike_series())

        self.assertEqual([c.frame_index for c in found], [30])
        kp = found[0]
        self.assertEqual(kp.category, KeypointCategory.LOCAL_HIGH)
        self.assertGreater(kp.confidence, 0.1)
        self.assertLessEqual(kp.confidence, 1.0)
        self.assertEqual(kp.detector, "LocalExtremaDetector")
        self.assertAlmostEqual(kp.metadata["significance"], (110.0 - 100.5) / 100.5)
        self.assertEqual(kp.metadata["detection_type"], "LOCAL_HIGH")

    def test_ties_disqualify(self):
        # Flat highs/lows: nothing strictly above or below its neighbours.
        found = LocalExtremaDetector().detect(_series_from_closes([100.0] * 40))
        self.assertEqual(found, [])

    def test_insignificant_extreme_is_dropped(self):
        closes = [100.0] * 40
        highs = [100.5] * 40
        highs[20] = 100.6
        found = LocalExtremaDetector().detect(_series_from_closes(closes, highs=highs, lows=[99.5] * 40))
        self.assertEqual(found, [])

        relaxed = LocalExtremaDetector(LocalExtremaConfig(min_significance=0.0))
        self.assertEqual([c.frame_index for c in relaxed.detect(_series_from_closes(closes, highs=highs, lows=[99.5] * 40))], [20])

    def test_local_low_uses_lows(self):
        closes = [100.0] * 30
        lows = [99.5] * 30
        lows[15] = 90.0
        found = LocalExtremaDetector().detect(_series_from_closes(closes, highs=[100.5] * 30, lows=lows))
        self.assertEqual([(c.frame_index, c.category) for c in found], [(15, KeypointCategory.LOCAL_LOW)])

    def test_short_series_returns_empty(self):
        det = LocalExtremaDetector()
        self.assertEqual(det.min_data_points(), 11)
        self.assertEqual(det.detect(_spike_series(n=10, spike_at=5)), [])

    def test_spike_inside_edge_window_is_ignored(self):
        found = LocalExtremaDetector().detect(_spike_series(n=40, spike_at=2))
        self.assertEqual(found, [])


class MacdCrossTests(unittest.TestCase):
    def test_ema_is_seeded_with_running_sma(self):
        out = ema_sma_seeded(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)
        np.testing.assert_allclose(out, [1.0, 1.5, 2.0, 3.0, 4.0])

    def test_macd_histogram_is_macd_minus_signal(self):
        close = np.linspace(100.0, 120.0, 60)
        m, s, h = macd(close, 12, 26, 9)
        np.testing.assert_allclose(h, m - s)

    def test_golden_cross_after_trend_reversal(self):
        closes = [130.0 - 0.5 * i for i in range(60)]
        closes += [closes[-1] + 0.5 * (i + 1) for i in range(40)]
        found = MacdCrossDetector().detect(_series_from_closes(closes))

        golden = [c for c in found if c.category is KeypointCategory.BULLISH_CROSS and 60 <= c.frame_index <= 75]
        self.assertTrue(golden, f"expected a golden cross after the reversal, got {found}")
        kp = golden[0]
        self.assertEqual(kp.metadata["cross_type"], "GOLDEN_CROSS")
        self.assertGreater(kp.metadata["histogram"], 0.0)
        self.assertGreaterEqual(kp.metadata["strength"], MacdCrossConfig().min_strength)
        self.assertGreater(kp.confidence, 0.0)

    def test_death_cross_after_top(self):
        closes = [100.0 + 0.5 * i for i in range(60)]
        closes += [closes[-1] - 0.5 * (i + 1) for i in range(40)]
        found = MacdCrossDetector().detect(_series_from_closes(closes))
        self.assertTrue(any(c.category is KeypointCategory.BEARISH_CROSS and c.frame_index >= 60 for c in found))

    def test_short_series_returns_empty(self):
        det = MacdCrossDetector()
        self.assertEqual(det.min_data_points(), 35)
        self.assertEqual(det.detect(_series_from_closes([100.0 + i for i in range(34)])), [])

    def test_trend_consistency_needs_history(self):
        hist = np.array([0.0, -0.1, -0.2, -0.1, 0.05, 0.1, 0.2])
        self.assertEqual(MacdCrossDetector._trend_consistency(hist, 4, True), 0.0)
        # deltas at j=2..5: -0.1, +0.1, +0.15, +0.05
        self.assertAlmostEqual(MacdCrossDetector._trend_consistency(hist, 6, True), 0.75)


class DetectorConfigTests(unittest.TestCase):
    def test_config_validation(self):
        with self.assertRaises(ConfigurationError):
            LocalExtremaConfig(window_size=0)
        with self.assertRaises(ConfigurationError):
            LocalExtremaConfig(volume_weight=1.5)
        with self.assertRaises(ConfigurationError):
            MacdCrossConfig(fast_period=26, slow_period=12)
        with self.assertRaises(ConfigurationError):
            MacdCrossConfig(signal_period=0)
        # Still a ValueError for callers that catch the builtin.
        with self.assertRaises(ValueError):
            LocalExtremaConfig(min_significance=-1.0)

    def test_from_config_accepts_camel_case(self):
        det = LocalExtremaDetector.from_config({"windowSize": 3, "min_significance": 0.02})
        self.assertEqual(det.config.window_size, 3)
        self.assertEqual(det.config.min_significance, 0.02)
        self.assertEqual(det.min_data_points(), 7)

    def test_from_config_rejects_unknown_and_invalid(self):
        with self.assertRaises(ConfigurationError):
            MacdCrossDetector.from_config({"fastPeriodz": 5})
        with self.assertRaises(ConfigurationError):
            MacdCrossDetector.from_config({"fastPeriod": 40, "slowPeriod": 30})

    def test_registry_builds_highest_priority_first(self):
        self.assertEqual(set(DETECTOR_REGISTRY), {"LocalExtremaDetector", "MacdCrossDetector"})
        built = build_detectors()
        self.assertEqual([d.name for d in built], ["LocalExtremaDetector", "MacdCrossDetector"])
        built = build_detectors(["MacdCrossDetector", "LocalExtremaDetector"])
        self.assertEqual([d.name for d in built], ["LocalExtremaDetector", "MacdCrossDetector"])

    def test_build_detectors_rejects_unknown(self):
        with self.assertRaises(ConfigurationError):
            build_detectors(["NopeDetector"])
        with self.assertRaises(ConfigurationError):
            build_detectors(["LocalExtremaDetector"], {"MacdCrossDetector": {"fastPeriod": 5}})


def test_candidate_confidence_is_clamped():
    c = KeypointCandidate(frame_index=3, confidence=1.7, category=KeypointCategory.LOCAL_LOW)
    assert c.confidence == 1.0
    assert KeypointCandidate(frame_index=3, confidence=float("nan"), category=KeypointCategory.LOCAL_LOW).confidence == 0.0
    with pytest.raises(ValueError):
        KeypointCandidate(frame_index=-1, confidence=0.5, category=KeypointCategory.LOCAL_LOW)


if __name__ == "__main__":
    unittest.main()
