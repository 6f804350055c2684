"""
Error taxonomy for the keypoint trading game.

Insufficient data inside a detector or scoring rule is NOT an error: plugins
return an empty/neutral result instead. The classes here cover configuration
problems, illegal state transitions and rejected submissions.
"""

from __future__ import annotations

from typing import Any, Optional


class TradeSimError(Exception):
    """Base error carrying a stable machine-readable code."""

    error_code = "TRADESIM_ERROR"

    def __init__(self, message: str, *, error_code: Optional[str] = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(error_code={self.error_code!r}, message={str(self)!r})"


class ConfigurationError(TradeSimError, ValueError):
    """Invalid plugin/runtime parameters. Raised at configuration-load time."""

    error_code = "INVALID_CONFIGURATION"


class InvalidSessionStateError(TradeSimError):
    """Operation not allowed in the session's current status."""

    error_code = "INVALID_SESSION_STATE"

    def __init__(self, session_id: str, status: Any, operation: str, detail: Optional[str] = None):
        status_name = getattr(status, "value", status)
        msg = f"Cannot perform operation '{operation}' on session {session_id} with status {status_name}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.session_id = session_id
        self.status = status
        self.operation = operation


class InvalidDecisionError(TradeSimError):
    """Submission rejected (wrong frame, bad price/quantity, foreign session...)."""

    error_code = "INVALID_DECISION"

    def __init__(self, session_id: str, reason: str, *, frame_index: Optional[int] = None):
        if frame_index is None:
            msg = f"Invalid decision for session {session_id}: {reason}"
        else:
            msg = f"Invalid decision for session {session_id} at frame {frame_index}: {reason}"
        super().__init__(msg)
        self.session_id = session_id
        self.frame_index = frame_index
        self.reason = reason


class SessionNotFoundError(TradeSimError, KeyError):
    error_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Game session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""


class InsufficientDataError(TradeSimError):
    """No playable game can be built from the supplied series."""

    error_code = "INSUFFICIENT_DATA"

    def __init__(self, symbol: str, message: str):
        super().__init__(f"Insufficient data for {symbol or '<unnamed>'}: {message}")
        self.symbol = symbol
