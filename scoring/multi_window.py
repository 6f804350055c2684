from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from errors import ConfigurationError
from game.types import DecisionType, GameDecision
from market.types import PriceSeries
from scoring import stats
from scoring.contracts import RiskPenalty, ScoringResult, ScoringRule

_MOMENTUM_LOOKBACK = 10
_MEAN_REVERSION_PERIOD = 20


@dataclass(frozen=True)
class MultiWindowConfig:
    windows: Tuple[int, ...] = (5, 10, 20)
    weights: Tuple[float, ...] = (0.3, 0.4, 0.3)
    mdd_penalty: float = 0.5
    volatility_penalty: float = 0.3
    trading_fee: float = 0.0005
    skip_bonus: float = 0.002
    momentum_weight: float = 0.2
    mean_reversion_weight: float = 0.1

    def __post_init__(self) -> None:
        windows = tuple(int(w) for w in self.windows)
        weights = tuple(float(w) for w in self.weights)
        object.__setattr__(self, "windows", windows)
        object.__setattr__(self, "weights", weights)
        if not windows:
            raise ConfigurationError("windows must not be empty")
        if len(windows) != len(weights):
            raise ConfigurationError(f"windows ({len(windows)}) and weights ({len(weights)}) must have the same length")
        bad = [w for w in windows if not (1 <= w <= 100)]
        if bad:
            raise ConfigurationError(f"every window must be in [1, 100], got {bad}")
        if any(w < 0 for w in weights):
            raise ConfigurationError(f"weights must be non-negative, got {weights}")
        if abs(sum(weights) - 1.0) > 0.01:
            raise ConfigurationError(f"weights must sum to 1.0 (+/- 0.01), got {sum(weights):.4f}")
        for name in ("mdd_penalty", "volatility_penalty", "skip_bonus", "momentum_weight", "mean_reversion_weight"):
            if float(getattr(self, name)) < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not (0.0 <= float(self.trading_fee) <= 0.01):
            raise ConfigurationError(f"trading_fee must be in [0, 0.01], got {self.trading_fee}")


class MultiWindowRiskAwareRule(ScoringRule):
    """
    Weighted PnL over several horizons, penalised by drawdown and (downside)
    volatility over the longest horizon and adjusted for whether the decision
    went with momentum / against a stretched price. Skips are rewarded more in
    risky windows.
    """

    name = "MultiWindowRiskAwareRule"
    version = "1.0.0"
    description = "Multi-horizon risk-aware scoring"
    priority = 5
    config_cls = MultiWindowConfig

    def score(self, decision: GameDecision, historical: PriceSeries, future: PriceSeries) -> ScoringResult:
        neutral = self._precheck(decision, future)
        if neutral is not None:
            return neutral

        cfg = self.config
        is_trade = decision.type.is_trade
        fee = float(cfg.trading_fee) if is_trade else 0.0

        window_scores: Dict[int, float] = {}
        window_pnls: List[float] = []
        weighted = 0.0
        used_weight = 0.0
        for window, weight in zip(cfg.windows, cfg.weights):
            if window > len(future):
                continue
            pnl_w = 0.0
            if is_trade:
                entry = float(decision.price)
                pnl_w = (future[window - 1].close - entry) / entry * decision.type.direction
            score_w = pnl_w - fee
            window_scores[window] = score_w
            window_pnls.append(pnl_w)
            weighted += score_w * weight
            used_weight += weight
        if used_weight > 0:
            weighted /= used_weight
        avg_pnl = sum(window_pnls) / len(window_pnls) if window_pnls else 0.0

        risk_window = min(max(cfg.windows), len(future))
        mdd_penalty = stats.max_drawdown(future, risk_window) * cfg.mdd_penalty
        vol_penalty = (
            stats.volatility(future, risk_window) * cfg.volatility_penalty
            + stats.downside_deviation(future, risk_window) * cfg.volatility_penalty * 0.5
        )
        # Per-window scores already carry the fee.
        penalty = RiskPenalty(mdd_penalty=mdd_penalty, volatility_penalty=vol_penalty, fee_penalty=0.0)

        technical = self._technical_adjustment(decision, historical)

        breakdown: Dict[str, float] = {
            "weighted_score": weighted,
            "mdd_penalty": -mdd_penalty,
            "volatility_penalty": -vol_penalty,
            "technical_adjustment": technical,
        }
        for window, s in window_scores.items():
            breakdown[f"window_{window}_score"] = s

        if decision.type is DecisionType.SKIP:
            adaptive = cfg.skip_bonus * (1.0 + 2.0 * penalty.total)
            final = max(0.0, adaptive - vol_penalty * 0.5)
            breakdown["skip_bonus"] = adaptive
        else:
            final = weighted - penalty.total + technical

        return ScoringResult(
            score=final,
            pnl=avg_pnl,
            breakdown=breakdown,
            risk_penalty=penalty,
            metadata={
                "rule": self.name,
                "decision_type": decision.type.value,
                "usable_windows": sorted(window_scores),
                "risk_window": risk_window,
                "trading_fee": fee,
            },
        )

    def _technical_adjustment(self, decision: GameDecision, historical: PriceSeries) -> float:
        if historical is None or len(historical) < _MOMENTUM_LOOKBACK or not decision.type.is_trade:
            return 0.0
        cfg = self.config
        adj = 0.0
        mom = stats.momentum(historical, _MOMENTUM_LOOKBACK)
        if decision.type is DecisionType.LONG and mom > 0:
            adj += mom * cfg.momentum_weight
        elif decision.type is DecisionType.SHORT and mom < 0:
            adj += abs(mom) * cfg.momentum_weight

        mr = stats.mean_reversion(historical, _MEAN_REVERSION_PERIOD)
        if decision.type is DecisionType.LONG and mr < 0:
            adj += abs(mr) * cfg.mean_reversion_weight
        elif decision.type is DecisionType.SHORT and mr > 0:
            adj += mr * cfg.mean_reversion_weight
        return adj
