"""
Keypoint trading game.

Headless domain layer: sessions, decisions and the orchestration service. No
transport lives here; a web or socket layer wraps GameService.

GameService is imported from `game.service` directly (it pulls in the scoring
and detector plugins).
"""

from game.session import GameSession
from game.types import DecisionType, GameDecision, SessionStatus

__all__ = [
    "DecisionType",
    "GameDecision",
    "GameSession",
    "SessionStatus",
]
