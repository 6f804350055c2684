from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional, Union

from errors import InvalidDecisionError

# Fixed-point precision for price / quantity / pnl / score.
DECIMAL_PLACES = 6
_QUANTUM = Decimal(1).scaleb(-DECIMAL_PLACES)

Number = Union[Decimal, float, int, str]


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """Quantize to 6 dp; floats go through repr so 0.1 stays 0.1."""
    if value is None:
        return None
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DecisionType(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    SKIP = "SKIP"

    @property
    def is_trade(self) -> bool:
        return self is not DecisionType.SKIP

    @property
    def direction(self) -> int:
        """+1 long, -1 short, 0 skip."""
        return {"LONG": 1, "SHORT": -1, "SKIP": 0}[self.value]

    @classmethod
    def parse(cls, value: Any) -> "DecisionType":
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        # Common synonyms used by clients.
        key = {"BUY": "LONG", "SELL": "SHORT", "HOLD": "SKIP"}.get(key, key)
        try:
            return cls(key)
        except ValueError as exc:
            raise ValueError(f"Unknown decision type: {value!r}") from exc


class SessionStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


@dataclass
class GameDecision:
    """
    One accepted player decision. Immutable once scored: `apply_score` may set
    pnl/score exactly once.
    """

    session_id: str
    frame_index: int
    type: DecisionType
    price: Optional[Decimal] = None
    quantity: Decimal = Decimal("1")
    response_time_ms: Optional[int] = None
    client_id: Optional[str] = None
    bar_index: Optional[int] = None
    pnl: Optional[Decimal] = None
    score: Optional[Decimal] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.type = DecisionType.parse(self.type)
        self.price = to_decimal(self.price)
        self.quantity = to_decimal(self.quantity if self.quantity is not None else 1)
        self.pnl = to_decimal(self.pnl)
        self.score = to_decimal(self.score)
        if self.response_time_ms is not None:
            self.response_time_ms = int(self.response_time_ms)

    @property
    def is_scored(self) -> bool:
        return self.score is not None

    def apply_score(self, result: Any) -> None:
        """Fold a ScoringResult (anything with .score and .pnl) into this decision."""
        if self.is_scored:
            raise InvalidDecisionError(self.session_id, f"decision {self.id} is already scored", frame_index=self.frame_index)
        self.pnl = to_decimal(result.pnl)
        self.score = to_decimal(result.score)
