"""
GameSession aggregate.

States: CREATED -> RUNNING <-> PAUSED -> COMPLETED, or any non-completed state
-> CANCELLED. Every illegal transition raises InvalidSessionStateError and
leaves the session untouched.

The session is not thread-safe on its own; GameService serializes all
mutations of one session.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from errors import InvalidDecisionError, InvalidSessionStateError
from game.types import DecisionType, GameDecision, SessionStatus, to_decimal, utc_now

ZERO = Decimal("0")


@dataclass
class GameSession:
    seed: int
    total_frames: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    symbol: str = ""
    # Bar index of each frame's keypoint, in frame order.
    keypoints: Tuple[int, ...] = ()
    current_frame: int = 0
    status: SessionStatus = SessionStatus.CREATED
    decisions: List[GameDecision] = field(default_factory=list)
    total_score: Decimal = ZERO
    total_pnl: Decimal = ZERO
    decision_count: int = 0
    timeout_count: int = 0
    avg_response_time_ms: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utc_now)
    # Number of response-time samples folded into avg_response_time_ms.
    response_samples: int = 0

    def __post_init__(self) -> None:
        if int(self.total_frames) < 1:
            raise ValueError(f"total_frames must be >= 1, got {self.total_frames}")
        self.total_frames = int(self.total_frames)
        self.seed = int(self.seed)
        self.keypoints = tuple(int(k) for k in self.keypoints)
        if self.keypoints and len(self.keypoints) != self.total_frames:
            raise ValueError(f"{len(self.keypoints)} keypoints for {self.total_frames} frames")
        self.status = SessionStatus(self.status)

    # -- state machine -------------------------------------------------

    def _require(self, operation: str, *allowed: SessionStatus) -> None:
        if self.status not in allowed:
            raise InvalidSessionStateError(self.id, self.status, operation)

    def _touch(self) -> None:
        self.updated_at = utc_now()

    def start(self) -> None:
        self._require("start", SessionStatus.CREATED)
        self.status = SessionStatus.RUNNING
        self.started_at = utc_now()
        self._touch()

    def pause(self) -> None:
        self._require("pause", SessionStatus.RUNNING)
        self.status = SessionStatus.PAUSED
        self._touch()

    def resume(self) -> None:
        self._require("resume", SessionStatus.PAUSED)
        self.status = SessionStatus.RUNNING
        self._touch()

    def complete(self) -> None:
        self._require("complete", SessionStatus.RUNNING, SessionStatus.PAUSED)
        self.status = SessionStatus.COMPLETED
        self.completed_at = utc_now()
        self._touch()

    def cancel(self) -> None:
        self._require(
            "cancel", SessionStatus.CREATED, SessionStatus.RUNNING, SessionStatus.PAUSED, SessionStatus.CANCELLED
        )
        if self.status is SessionStatus.CANCELLED:
            return
        self.status = SessionStatus.CANCELLED
        self._touch()

    def advance_frame(self) -> None:
        self._require("advance_frame", SessionStatus.RUNNING)
        if self.current_frame >= self.total_frames:
            raise InvalidSessionStateError(self.id, self.status, "advance_frame", "no frames left")
        self.current_frame += 1
        self._touch()
        if self.current_frame == self.total_frames:
            self.complete()

    # -- ledger ----------------------------------------------------------

    def add_decision(self, decision: GameDecision) -> None:
        if decision.session_id != self.id:
            raise InvalidDecisionError(self.id, f"decision belongs to session {decision.session_id}")
        if self.find_decision_at(decision.frame_index) is not None:
            raise InvalidDecisionError(self.id, "frame already has a decision", frame_index=decision.frame_index)
        self.decisions.append(decision)
        self.decision_count += 1
        if decision.response_time_ms is not None:
            n = self.response_samples + 1
            prev = self.avg_response_time_ms or 0.0
            self.avg_response_time_ms = (prev * (n - 1) + float(decision.response_time_ms)) / n
            self.response_samples = n
        self._touch()

    def record_timeout(self) -> None:
        self.timeout_count += 1
        self._touch()

    def update_score(self, delta: Any) -> None:
        self.total_score = to_decimal(self.total_score + to_decimal(delta))
        self._touch()

    def update_pnl(self, delta: Any) -> None:
        self.total_pnl = to_decimal(self.total_pnl + to_decimal(delta))
        self._touch()

    def find_decision(self, decision_id: str) -> Optional[GameDecision]:
        for d in self.decisions:
            if d.id == decision_id:
                return d
        return None

    def find_decision_at(self, frame_index: int) -> Optional[GameDecision]:
        for d in self.decisions:
            if d.frame_index == frame_index:
                return d
        return None

    def find_decision_by_client_id(self, client_id: Optional[str]) -> Optional[GameDecision]:
        if not client_id:
            return None
        for d in self.decisions:
            if d.client_id == client_id:
                return d
        return None

    def validate_submission(
        self,
        frame_index: int,
        decision_type: DecisionType,
        price: Optional[Decimal],
        quantity: Optional[Decimal],
    ) -> None:
        """Raise if a submission would be rejected. Never mutates."""
        if self.status is not SessionStatus.RUNNING:
            raise InvalidSessionStateError(self.id, self.status, "submit_decision")
        if frame_index != self.current_frame:
            raise InvalidDecisionError(
                self.id,
                f"expected frame {self.current_frame}",
                frame_index=frame_index,
            )
        if decision_type.is_trade:
            if price is None or price <= 0:
                raise InvalidDecisionError(self.id, "price must be > 0 for LONG/SHORT", frame_index=frame_index)
            if quantity is None or quantity <= 0:
                raise InvalidDecisionError(self.id, "quantity must be > 0 for LONG/SHORT", frame_index=frame_index)
        elif price is not None:
            raise InvalidDecisionError(self.id, "SKIP must not carry a price", frame_index=frame_index)

    # -- queries ---------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.RUNNING, SessionStatus.PAUSED)

    @property
    def progress(self) -> float:
        """Percent of frames played."""
        return round(self.current_frame * 100.0 / self.total_frames, 2)

    @property
    def current_keypoint(self) -> Optional[int]:
        if self.keypoints and self.current_frame < self.total_frames:
            return self.keypoints[self.current_frame]
        return None

    def summary(self) -> Dict[str, Any]:
        trades = [d for d in self.decisions if d.type.is_trade]
        scored_trades = [d for d in trades if d.pnl is not None]
        wins = sum(1 for d in scored_trades if d.pnl > 0)
        return {
            "session_id": self.id,
            "symbol": self.symbol,
            "seed": self.seed,
            "status": self.status.value,
            "current_frame": self.current_frame,
            "total_frames": self.total_frames,
            "progress": self.progress,
            "decision_count": self.decision_count,
            "trade_count": len(trades),
            "skip_count": self.decision_count - len(trades),
            "timeout_count": self.timeout_count,
            "win_rate": (wins / len(scored_trades)) if scored_trades else None,
            "total_score": str(self.total_score),
            "total_pnl": str(self.total_pnl),
            "avg_response_time_ms": self.avg_response_time_ms,
        }
