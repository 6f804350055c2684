from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from database import get_db_connection

SESSION_CREATED = "SESSION_CREATED"
STATUS_CHANGED = "STATUS_CHANGED"
DECISION_SUBMITTED = "DECISION_SUBMITTED"
DECISION_SCORED = "DECISION_SCORED"
SCORE_DISCARDED = "SCORE_DISCARDED"
TIMEOUT_RECORDED = "TIMEOUT_RECORDED"


def _iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _iso_z(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=_json_default)


@dataclass(frozen=True)
class GameEvent:
    event_id: int
    session_id: str
    event_type: str
    ts: datetime
    payload: Dict[str, Any] = field(default_factory=dict)


class MemoryEventLog:
    """Append-only in-process event log."""

    def __init__(self) -> None:
        self._events: List[GameEvent] = []
        self._lock = threading.Lock()

    def emit(self, *, session_id: str, event_type: str, payload: Dict[str, Any], ts: Optional[datetime] = None) -> int:
        # Round-trip through JSON so stored payloads match what SQLite would keep.
        stored = json.loads(encode_payload(payload))
        with self._lock:
            event_id = len(self._events) + 1
            self._events.append(
                GameEvent(
                    event_id=event_id,
                    session_id=session_id,
                    event_type=event_type,
                    ts=ts or datetime.now(timezone.utc),
                    payload=stored,
                )
            )
        return event_id

    def events(self, session_id: Optional[str] = None, event_type: Optional[str] = None) -> List[GameEvent]:
        with self._lock:
            return [
                e
                for e in self._events
                if (session_id is None or e.session_id == session_id)
                and (event_type is None or e.event_type == event_type)
            ]


@dataclass
class SqliteEventLog:
    """
    Append-only event log backed by the `game_events` table.
    SQLite is the authoritative sink; one short-lived connection per write.
    """

    db_path: Optional[str] = None

    def emit(self, *, session_id: str, event_type: str, payload: Dict[str, Any], ts: Optional[datetime] = None) -> int:
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO game_events (session_id, ts, event_type, payload_json)
                VALUES (?, ?, ?, ?)
                """,
                (
                    session_id,
                    _iso_z(ts or datetime.now(timezone.utc)),
                    event_type,
                    encode_payload(payload),
                ),
            )
            conn.commit()
            return int(cur.lastrowid)
        finally:
            conn.close()

    def events(self, session_id: Optional[str] = None, event_type: Optional[str] = None) -> List[GameEvent]:
        clauses: List[str] = []
        params: List[Any] = []
        if session_id is not None:
            clauses.append("session_id = ?")
            params.append(session_id)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(event_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = get_db_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id, session_id, ts, event_type, payload_json FROM game_events {where} ORDER BY id ASC",
                tuple(params),
            )
            rows = cur.fetchall()
        finally:
            conn.close()
        return [
            GameEvent(
                event_id=int(eid),
                session_id=sid,
                event_type=etype,
                ts=datetime.fromisoformat(ts.replace("Z", "+00:00")),
                payload=json.loads(payload_json),
            )
            for (eid, sid, ts, etype, payload_json) in rows
        ]
