from __future__ import annotations

from dataclasses import dataclass

from errors import ConfigurationError
from game.types import DecisionType, GameDecision
from market.types import PriceSeries
from scoring import stats
from scoring.contracts import RiskPenalty, ScoringResult, ScoringRule


@dataclass(frozen=True)
class SingleWindowConfig:
    window_size: int = 10
    trading_fee: float = 0.0005
    risk_weight: float = 0.1
    skip_bonus: float = 0.001
    max_loss_penalty: float = 0.1

    def __post_init__(self) -> None:
        if not (1 <= int(self.window_size) <= 100):
            raise ConfigurationError(f"window_size must be in [1, 100], got {self.window_size}")
        if not (0.0 <= float(self.trading_fee) <= 0.01):
            raise ConfigurationError(f"trading_fee must be in [0, 0.01], got {self.trading_fee}")
        if not (0.0 <= float(self.risk_weight) <= 1.0):
            raise ConfigurationError(f"risk_weight must be in [0, 1], got {self.risk_weight}")
        if float(self.skip_bonus) < 0:
            raise ConfigurationError(f"skip_bonus must be >= 0, got {self.skip_bonus}")
        if float(self.max_loss_penalty) < 0:
            raise ConfigurationError(f"max_loss_penalty must be >= 0, got {self.max_loss_penalty}")


class SingleWindowRule(ScoringRule):
    """
    PnL at a single horizon (`window_size` bars ahead, or the last available
    bar), less one trading fee, less volatility and drawdown penalties measured
    over the same bars. Skips earn `skip_bonus` minus the volatility penalty,
    floored at zero.
    """

    name = "SingleWindowRule"
    version = "1.0.0"
    description = "Fixed-horizon PnL with risk penalties"
    priority = 10
    config_cls = SingleWindowConfig

    def score(self, decision: GameDecision, historical: PriceSeries, future: PriceSeries) -> ScoringResult:
        neutral = self._precheck(decision, future)
        if neutral is not None:
            return neutral

        cfg = self.config
        available = min(int(cfg.window_size), len(future))
        future_price = future[available - 1].close

        change = 0.0
        if decision.type.is_trade:
            entry = float(decision.price)
            change = (future_price - entry) / entry
        pnl = change * decision.type.direction
        fee = float(cfg.trading_fee) if decision.type.is_trade else 0.0

        vol_penalty = stats.volatility(future, available) * cfg.risk_weight
        mdd_penalty = min(stats.max_drawdown(future, available) * cfg.risk_weight * 2.0, cfg.max_loss_penalty)
        penalty = RiskPenalty(mdd_penalty=mdd_penalty, volatility_penalty=vol_penalty, fee_penalty=fee)

        breakdown = {
            "raw_pnl": pnl,
            "trading_fee": -fee,
            "mdd_penalty": -mdd_penalty,
            "volatility_penalty": -vol_penalty,
        }
        if decision.type is DecisionType.SKIP:
            final = max(0.0, cfg.skip_bonus - vol_penalty)
            breakdown["skip_bonus"] = cfg.skip_bonus
        else:
            final = pnl - penalty.total

        return ScoringResult(
            score=final,
            pnl=pnl,
            breakdown=breakdown,
            risk_penalty=penalty,
            metadata={
                "rule": self.name,
                "decision_type": decision.type.value,
                "price_change": change,
                "future_price": future_price,
                "available_bars": available,
                "window_size": cfg.window_size,
            },
        )
