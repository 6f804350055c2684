import unittest
from datetime import datetime, timedelta, timezone

import pytest

from errors import ConfigurationError
from game.types import DecisionType, GameDecision
from market.types import PriceBar, PriceSeries
from scoring import (
    SCORING_REGISTRY,
    MultiWindowConfig,
    MultiWindowRiskAwareRule,
    ScoringResult,
    ScoringRule,
    SingleWindowConfig,
    SingleWindowRule,
    build_scoring_rules,
    combine_results,
    score_decision,
)
from scoring import stats


def _series(closes, start_minute: int = 0) -> PriceSeries:
    start = datetime(2025, 1, 1, 14, 30, tzinfo=timezone.utc)
    bars = [
        PriceBar(ts=start + timedelta(minutes=start_minute + i), open=c, high=c + 0.1, low=c - 0.1, close=c, volume=1000.0)
        for i, c in enumerate(closes)
    ]
    return PriceSeries(bars, symbol="TEST")


def _decision(kind, price=100.0) -> GameDecision:
    return GameDecision(session_id="s1", frame_index=0, type=kind, price=price if kind != "SKIP" else None)


class _ExplodingRule(ScoringRule):
    name = "ExplodingRule"
    config_cls = SingleWindowConfig

    def score(self, decision, historical, future):
        raise RuntimeError("boom")


class SingleWindowTests(unittest.TestCase):
    def setUp(self):
        self.rule = SingleWindowRule(SingleWindowConfig(trading_fee=0.0, risk_weight=0.0, skip_bonus=0.0))
        self.hist = _series([100.0])
        self.future = _series([110.0], start_minute=1)

    def test_long_short_skip_on_ten_percent_move(self):
        long_res = self.rule.score(_decision("LONG"), self.hist, self.future)
        short_res = self.rule.score(_decision("SHORT"), self.hist, self.future)
        skip_res = self.rule.score(_decision("SKIP"), self.hist, self.future)

        self.assertAlmostEqual(long_res.pnl, 0.10)
        self.assertAlmostEqual(long_res.score, 0.10)
        self.assertAlmostEqual(short_res.pnl, -0.10)
        self.assertAlmostEqual(short_res.score, -0.10)
        self.assertEqual(skip_res.pnl, 0.0)
        self.assertEqual(skip_res.score, 0.0)
        self.assertFalse(long_res.is_neutral)

    def test_horizon_uses_window_or_last_available_bar(self):
        rule = SingleWindowRule(SingleWindowConfig(window_size=2, trading_fee=0.0, risk_weight=0.0))
        res = rule.score(_decision("LONG"), self.hist, _series([101.0, 102.0, 150.0], start_minute=1))
        self.assertAlmostEqual(res.pnl, 0.02)
        self.assertEqual(res.metadata["available_bars"], 2)

        res = rule.score(_decision("LONG"), self.hist, _series([103.0], start_minute=1))
        self.assertAlmostEqual(res.pnl, 0.03)
        self.assertEqual(res.metadata["available_bars"], 1)

    def test_fee_and_risk_penalties(self):
        rule = SingleWindowRule(SingleWindowConfig(window_size=3, trading_fee=0.001, risk_weight=0.5, max_loss_penalty=1.0))
        future = _series([110.0, 99.0, 105.0], start_minute=1)
        res = rule.score(_decision("LONG"), self.hist, future)

        mdd = stats.max_drawdown(future, 3)
        vol = stats.volatility(future, 3)
        self.assertAlmostEqual(mdd, 0.1)
        self.assertAlmostEqual(res.risk_penalty.mdd_penalty, mdd * 0.5 * 2.0)
        self.assertAlmostEqual(res.risk_penalty.volatility_penalty, vol * 0.5)
        self.assertAlmostEqual(res.risk_penalty.fee_penalty, 0.001)
        self.assertAlmostEqual(res.score, 0.05 - res.risk_penalty.total)
        self.assertAlmostEqual(res.breakdown["trading_fee"], -0.001)

    def test_mdd_penalty_is_capped(self):
        rule = SingleWindowRule(SingleWindowConfig(window_size=3, risk_weight=1.0, max_loss_penalty=0.05))
        res = rule.score(_decision("LONG"), self.hist, _series([100.0, 50.0, 60.0], start_minute=1))
        self.assertAlmostEqual(res.risk_penalty.mdd_penalty, 0.05)

    def test_skip_bonus_floored_at_zero(self):
        rule = SingleWindowRule(SingleWindowConfig(window_size=3, risk_weight=1.0, skip_bonus=0.001))
        res = rule.score(_decision("SKIP"), self.hist, _series([100.0, 120.0, 90.0], start_minute=1))
        self.assertEqual(res.score, 0.0)
        self.assertEqual(res.risk_penalty.fee_penalty, 0.0)

        calm = rule.score(_decision("SKIP"), self.hist, _series([100.0, 100.0, 100.0], start_minute=1))
        self.assertAlmostEqual(calm.score, 0.001)

    def test_neutral_inputs(self):
        empty = self.rule.score(_decision("LONG"), self.hist, PriceSeries([], symbol="TEST"))
        self.assertTrue(empty.is_neutral)
        self.assertEqual(empty.metadata["reason"], "empty_future_window")
        self.assertEqual((empty.score, empty.pnl), (0.0, 0.0))

        no_price = self.rule.score(_decision("LONG", price=None), self.hist, self.future)
        self.assertEqual(no_price.metadata["reason"], "invalid_decision_price")

        missing = self.rule.score(None, self.hist, self.future)
        self.assertEqual(missing.metadata["reason"], "missing_decision")

    def test_config_validation(self):
        with self.assertRaises(ConfigurationError):
            SingleWindowConfig(window_size=0)
        with self.assertRaises(ConfigurationError):
            SingleWindowConfig(trading_fee=0.5)
        with self.assertRaises(ConfigurationError):
            SingleWindowRule.from_config({"riskWeight": 2.0})


class MultiWindowTests(unittest.TestCase):
    def setUp(self):
        self.flat_hist = _series([100.0] * 5)

    def test_weights_validation(self):
        with self.assertRaises(ConfigurationError):
            MultiWindowConfig(windows=(5, 10), weights=(0.5, 0.3, 0.2))
        with self.assertRaises(ConfigurationError):
            MultiWindowConfig(windows=(5, 10), weights=(0.5, 0.3))
        with self.assertRaises(ConfigurationError):
            MultiWindowConfig(windows=(), weights=())
        with self.assertRaises(ConfigurationError):
            MultiWindowConfig(windows=(0, 10), weights=(0.5, 0.5))
        cfg = MultiWindowConfig(windows=[5, 10], weights=[0.5, 0.505])
        self.assertEqual(cfg.windows, (5, 10))

    def test_from_config_converts_lists(self):
        rule = MultiWindowRiskAwareRule.from_config({"windows": [3, 6], "weights": [0.5, 0.5]})
        self.assertEqual(rule.config.windows, (3, 6))
        self.assertEqual(rule.config.weights, (0.5, 0.5))

    def test_only_usable_windows_are_scored(self):
        rule = MultiWindowRiskAwareRule(MultiWindowConfig(trading_fee=0.0, mdd_penalty=0.0, volatility_penalty=0.0))
        future = _series([100.0 + i for i in range(1, 8)], start_minute=5)
        res = rule.score(_decision("LONG"), self.flat_hist, future)

        self.assertEqual(res.metadata["usable_windows"], [5])
        self.assertIn("window_5_score", res.breakdown)
        self.assertNotIn("window_10_score", res.breakdown)
        # Renormalised over the usable weight.
        self.assertAlmostEqual(res.breakdown["weighted_score"], 0.05)
        self.assertAlmostEqual(res.score, 0.05)
        self.assertAlmostEqual(res.pnl, 0.05)
        self.assertEqual(res.metadata["risk_window"], 7)

    def test_fee_is_charged_per_window_not_twice(self):
        rule = MultiWindowRiskAwareRule(MultiWindowConfig(windows=(2,), weights=(1.0,), mdd_penalty=0.0, volatility_penalty=0.0, trading_fee=0.001))
        res = rule.score(_decision("LONG"), self.flat_hist, _series([101.0, 102.0], start_minute=5))
        self.assertAlmostEqual(res.breakdown["window_2_score"], 0.019)
        self.assertAlmostEqual(res.score, 0.019)
        self.assertEqual(res.risk_penalty.fee_penalty, 0.0)

    def test_technical_adjustment_rewards_momentum_long(self):
        rule = MultiWindowRiskAwareRule()
        rising = _series([100.0 + i for i in range(20)])
        self.assertGreater(rule._technical_adjustment(_decision("LONG", price=119.0), rising), 0.0)
        self.assertEqual(rule._technical_adjustment(_decision("SKIP"), rising), 0.0)
        self.assertEqual(rule._technical_adjustment(_decision("LONG"), _series([100.0] * 9)), 0.0)

        mom = stats.momentum(rising, 10)
        self.assertAlmostEqual(mom, (119.0 - 110.0) / 110.0)
        # Long against a stretched-up price gets no mean-reversion credit.
        self.assertAlmostEqual(rule._technical_adjustment(_decision("LONG", price=119.0), rising), mom * 0.2)

    def test_skip_bonus_grows_with_risk(self):
        rule = MultiWindowRiskAwareRule(MultiWindowConfig(windows=(3,), weights=(1.0,), volatility_penalty=0.0))
        calm = rule.score(_decision("SKIP"), self.flat_hist, _series([100.0, 100.0, 100.0], start_minute=5))
        choppy = rule.score(_decision("SKIP"), self.flat_hist, _series([100.0, 80.0, 90.0], start_minute=5))

        self.assertAlmostEqual(calm.score, 0.002)
        self.assertAlmostEqual(choppy.breakdown["skip_bonus"], 0.002 * (1.0 + 2.0 * 0.5 * 0.2))
        self.assertGreater(choppy.score, calm.score)

    def test_neutral_on_empty_future(self):
        res = MultiWindowRiskAwareRule().score(_decision("SHORT"), self.flat_hist, PriceSeries([]))
        self.assertEqual(res.metadata["reason"], "empty_future_window")


class RunnerTests(unittest.TestCase):
    def test_results_are_averaged_and_prefixed(self):
        a = ScoringResult(score=0.2, pnl=0.1, breakdown={"raw_pnl": 0.1}, metadata={"rule": "A"})
        b = ScoringResult(score=0.0, pnl=0.3, breakdown={"raw_pnl": 0.3}, metadata={"rule": "B"})
        out = combine_results([a, b])
        self.assertAlmostEqual(out.score, 0.1)
        self.assertAlmostEqual(out.pnl, 0.2)
        self.assertEqual(out.breakdown, {"A.raw_pnl": 0.1, "B.raw_pnl": 0.3})
        self.assertEqual(out.metadata["rules"], ["A", "B"])

    def test_failing_rule_is_excluded(self):
        rules = [SingleWindowRule(SingleWindowConfig(trading_fee=0.0, risk_weight=0.0)), _ExplodingRule()]
        out = score_decision(rules, _decision("LONG"), _series([100.0]), _series([105.0], start_minute=1))
        self.assertAlmostEqual(out.score, 0.05)
        self.assertEqual(out.metadata["failed_rules"], ["ExplodingRule"])

    def test_all_rules_failed_is_neutral(self):
        out = score_decision([_ExplodingRule()], _decision("LONG"), _series([100.0]), _series([105.0], start_minute=1))
        self.assertEqual(out.score, 0.0)
        self.assertEqual(out.metadata["reason"], "all_rules_failed")
        self.assertTrue(out.is_neutral)

    def test_registry_order(self):
        self.assertEqual(set(SCORING_REGISTRY), {"SingleWindowRule", "MultiWindowRiskAwareRule"})
        self.assertEqual([r.name for r in build_scoring_rules()], ["SingleWindowRule", "MultiWindowRiskAwareRule"])
        with self.assertRaises(ConfigurationError):
            build_scoring_rules(["MissingRule"])


@pytest.mark.parametrize(
    "closes,expected",
    [
        ([100.0], 0.0),
        ([100.0, 110.0, 99.0, 105.0], 0.1),
        ([100.0, 101.0, 102.0], 0.0),
    ],
)
def test_max_drawdown(closes, expected):
    assert stats.max_drawdown(_series(closes), len(closes)) == pytest.approx(expected)


def test_downside_deviation_ignores_gains():
    s = _series([100.0, 90.0, 99.0, 89.1])
    # returns: -0.1, +0.1, -0.1
    assert stats.downside_deviation(s, 4) == pytest.approx(0.1)
    assert stats.downside_deviation(_series([1.0, 2.0, 3.0]), 3) == 0.0


if __name__ == "__main__":
    unittest.main()
