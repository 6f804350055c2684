"""
Scoring contract.

A scoring rule turns one decision plus the bars around it into a ScoringResult:
- `historical`: bars up to and including the decision bar (oldest first)
- `future`: bars strictly after the decision bar (oldest first)

Rules must not mutate their inputs. Missing future data or a malformed
decision is not an error: the rule returns `ScoringResult.neutral(...)` with a
reason in its metadata.

Units: `pnl` is a return fraction (Long 100 -> 110 gives 0.10), `score` is the
risk-adjusted pnl after fees.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from game.types import GameDecision
from market.types import PriceSeries
from utils import config_from_mapping


@dataclass(frozen=True)
class RiskPenalty:
    mdd_penalty: float = 0.0
    volatility_penalty: float = 0.0
    fee_penalty: float = 0.0

    @property
    def total(self) -> float:
        return self.mdd_penalty + self.volatility_penalty + self.fee_penalty


@dataclass(frozen=True)
class ScoringResult:
    score: float
    pnl: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    risk_penalty: RiskPenalty = field(default_factory=RiskPenalty)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def neutral(cls, rule: str, reason: str) -> "ScoringResult":
        return cls(score=0.0, pnl=0.0, metadata={"rule": rule, "reason": reason})

    @property
    def is_neutral(self) -> bool:
        return "reason" in self.metadata


class ScoringRule(ABC):
    name: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    description: ClassVar[str] = ""
    priority: ClassVar[int] = 100
    config_cls: ClassVar[Type[Any]]

    def __init__(self, config: Optional[Any] = None):
        self.config = config if config is not None else self.config_cls()

    @classmethod
    def from_config(cls, mapping: Optional[Mapping[str, Any]] = None) -> "ScoringRule":
        return cls(config_from_mapping(cls.config_cls, mapping))

    @abstractmethod
    def score(self, decision: GameDecision, historical: PriceSeries, future: PriceSeries) -> ScoringResult:
        ...

    def _precheck(self, decision: GameDecision, future: PriceSeries) -> Optional[ScoringResult]:
        """Neutral result for inputs no rule can score, else None."""
        if decision is None:
            return ScoringResult.neutral(self.name, "missing_decision")
        if future is None or len(future) == 0:
            return ScoringResult.neutral(self.name, "empty_future_window")
        if decision.type.is_trade and (decision.price is None or decision.price <= 0):
            return ScoringResult.neutral(self.name, "invalid_decision_price")
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"
