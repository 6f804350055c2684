"""
Session persistence.

Stores hand out independent copies: mutating a session returned by `get` never
changes the stored state until it is passed back to `save`.
"""

from __future__ import annotations

import copy
import json
import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from database import get_db_connection
from game.session import GameSession
from game.types import DecisionType, GameDecision, SessionStatus


class SessionStore(Protocol):
    def save(self, session: GameSession) -> None: ...

    def get(self, session_id: str) -> Optional[GameSession]: ...

    def delete(self, session_id: str) -> bool: ...

    def list(self, status: Optional[SessionStatus] = None) -> List[GameSession]: ...

    def top_scoring(self, limit: int = 10) -> List[GameSession]: ...


def _rank(sessions: List[GameSession], limit: int) -> List[GameSession]:
    done = [s for s in sessions if s.status is SessionStatus.COMPLETED]
    done.sort(key=lambda s: (-s.total_score, s.completed_at or s.updated_at))
    return done[: max(0, int(limit))]


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, GameSession] = {}
        self._lock = threading.Lock()

    def save(self, session: GameSession) -> None:
        with self._lock:
            self._sessions[session.id] = copy.deepcopy(session)

    def get(self, session_id: str) -> Optional[GameSession]:
        with self._lock:
            s = self._sessions.get(session_id)
            return copy.deepcopy(s) if s is not None else None

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list(self, status: Optional[SessionStatus] = None) -> List[GameSession]:
        with self._lock:
            out = [copy.deepcopy(s) for s in self._sessions.values() if status is None or s.status is status]
        out.sort(key=lambda s: s.created_at)
        return out

    def top_scoring(self, limit: int = 10) -> List[GameSession]:
        return _rank(self.list(SessionStatus.COMPLETED), limit)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class SqliteSessionStore:
    """Sessions in `game_sessions`, decisions in `game_decisions` (see database.init_database)."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def save(self, session: GameSession) -> None:
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT OR REPLACE INTO game_sessions (
                    id, seed, symbol, total_frames, current_frame, status,
                    total_score, total_pnl, decision_count, timeout_count,
                    avg_response_time_ms, extra_json,
                    created_at, started_at, completed_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.seed,
                    session.symbol,
                    session.total_frames,
                    session.current_frame,
                    session.status.value,
                    str(session.total_score),
                    str(session.total_pnl),
                    session.decision_count,
                    session.timeout_count,
                    session.avg_response_time_ms,
                    json.dumps({"keypoints": list(session.keypoints), "response_samples": session.response_samples}),
                    session.created_at.isoformat(),
                    session.started_at.isoformat() if session.started_at else None,
                    session.completed_at.isoformat() if session.completed_at else None,
                    session.updated_at.isoformat(),
                ),
            )
            cur.execute("DELETE FROM game_decisions WHERE session_id = ?", (session.id,))
            for d in session.decisions:
                cur.execute(
                    """
                    INSERT INTO game_decisions (
                        id, session_id, frame_index, bar_index, decision_type,
                        price, quantity, response_time_ms, pnl, score, client_id, ts
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        d.id,
                        d.session_id,
                        d.frame_index,
                        d.bar_index,
                        d.type.value,
                        str(d.price) if d.price is not None else None,
                        str(d.quantity),
                        d.response_time_ms,
                        str(d.pnl) if d.pnl is not None else None,
                        str(d.score) if d.score is not None else None,
                        d.client_id,
                        d.timestamp.isoformat(),
                    ),
                )
            conn.commit()
        finally:
            conn.close()

    def _load(self, conn, row) -> GameSession:
        (sid, seed, symbol, total_frames, current_frame, status, total_score, total_pnl,
         decision_count, timeout_count, avg_rt, extra_json, created_at, started_at, completed_at, updated_at) = row
        extra = json.loads(extra_json or "{}")
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, frame_index, bar_index, decision_type, price, quantity,
                   response_time_ms, pnl, score, client_id, ts
            FROM game_decisions WHERE session_id = ? ORDER BY frame_index ASC
            """,
            (sid,),
        )
        decisions = [
            GameDecision(
                id=did,
                session_id=sid,
                frame_index=int(frame),
                bar_index=bar_index,
                type=DecisionType(dtype),
                price=_dec(price),
                quantity=Decimal(qty),
                response_time_ms=rt,
                pnl=_dec(pnl),
                score=_dec(score),
                client_id=client_id,
                timestamp=datetime.fromisoformat(ts),
            )
            for (did, frame, bar_index, dtype, price, qty, rt, pnl, score, client_id, ts) in cur.fetchall()
        ]
        return GameSession(
            id=sid,
            seed=int(seed),
            symbol=symbol or "",
            total_frames=int(total_frames),
            keypoints=tuple(extra.get("keypoints", ())),
            current_frame=int(current_frame),
            status=SessionStatus(status),
            decisions=decisions,
            total_score=Decimal(total_score),
            total_pnl=Decimal(total_pnl),
            decision_count=int(decision_count),
            timeout_count=int(timeout_count),
            avg_response_time_ms=avg_rt,
            response_samples=int(extra.get("response_samples", 0)),
            created_at=datetime.fromisoformat(created_at),
            started_at=_dt(started_at),
            completed_at=_dt(completed_at),
            updated_at=datetime.fromisoformat(updated_at),
        )

    _SELECT = """
        SELECT id, seed, symbol, total_frames, current_frame, status,
               total_score, total_pnl, decision_count, timeout_count,
               avg_response_time_ms, extra_json,
               created_at, started_at, completed_at, updated_at
        FROM game_sessions
    """

    def get(self, session_id: str) -> Optional[GameSession]:
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(self._SELECT + " WHERE id = ?", (session_id,))
            row = cur.fetchone()
            return self._load(conn, row) if row else None
        finally:
            conn.close()

    def delete(self, session_id: str) -> bool:
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM game_sessions WHERE id = ?", (session_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def list(self, status: Optional[SessionStatus] = None) -> List[GameSession]:
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            if status is None:
                cur.execute(self._SELECT + " ORDER BY created_at ASC")
            else:
                cur.execute(self._SELECT + " WHERE status = ? ORDER BY created_at ASC", (status.value,))
            return [self._load(conn, row) for row in cur.fetchall()]
        finally:
            conn.close()

    def top_scoring(self, limit: int = 10) -> List[GameSession]:
        # total_score is stored as text; rank in Python to keep Decimal ordering exact.
        return _rank(self.list(SessionStatus.COMPLETED), limit)
