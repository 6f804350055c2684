"""
Game orchestration.

GameService is the single writer for every session it manages. Each public
operation:
- takes the session's lock (concurrent calls for one session queue up)
- loads a working copy from the store
- mutates the copy and saves it only if the whole operation succeeded

Scores computed off the request path come back through `apply_score`, which
takes the same lock and drops results for sessions that have already ended.
"""

from __future__ import annotations

import copy
import logging
import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from detectors import Detector, KeypointSelection, build_detectors
from detectors.selector import detect_keypoints
from errors import InsufficientDataError, InvalidSessionStateError, SessionNotFoundError
from game import events
from game.events import MemoryEventLog
from game.session import GameSession
from game.settings import GameSettings
from game.store import InMemorySessionStore, SessionStore
from game.types import DecisionType, GameDecision, SessionStatus, to_decimal
from market.types import PriceSeries
from scoring import ScoringResult, ScoringRule, build_scoring_rules, score_decision

logger = logging.getLogger(__name__)

_SEED_BITS = 63


class GameService:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        settings: Optional[GameSettings] = None,
        detectors: Optional[Sequence[Detector]] = None,
        scoring_rules: Optional[Sequence[ScoringRule]] = None,
        event_log: Optional[Any] = None,
    ):
        self.settings = settings or GameSettings()
        self.store = store if store is not None else InMemorySessionStore()
        self.detectors: List[Detector] = (
            list(detectors) if detectors is not None else build_detectors(self.settings.detectors)
        )
        self.scoring_rules: List[ScoringRule] = (
            list(scoring_rules) if scoring_rules is not None else build_scoring_rules(self.settings.scoring_rules)
        )
        self.event_log = event_log if event_log is not None else MemoryEventLog()

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._series: Dict[str, PriceSeries] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._pending_guard = threading.Lock()

    # -- plumbing --------------------------------------------------------

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _release(self, session_id: str) -> None:
        """Drop the series and lock kept for a session that can no longer change."""
        self._series.pop(session_id, None)
        with self._locks_guard:
            self._locks.pop(session_id, None)

    def _load(self, session_id: str) -> GameSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _emit(self, session_id: str, event_type: str, **payload: Any) -> None:
        self.event_log.emit(session_id=session_id, event_type=event_type, payload=payload)

    def _status_event(self, session_id: str, before: SessionStatus, after: SessionStatus, operation: str) -> None:
        if before is not after:
            self._emit(session_id, events.STATUS_CHANGED, old=before, new=after, operation=operation)
            logger.info("Session %s %s -> %s (%s)", session_id, before.value, after.value, operation)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.scoring_workers, thread_name_prefix="scoring"
            )
        return self._executor

    # -- keypoints / creation ------------------------------------------

    def detect_keypoints(
        self,
        series: PriceSeries,
        min_count: Optional[int] = None,
        max_count: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> KeypointSelection:
        return detect_keypoints(
            series,
            self.settings.min_keypoints if min_count is None else min_count,
            self.settings.max_keypoints if max_count is None else max_count,
            new_seed() if seed is None else seed,
            detectors=self.detectors,
        )

    def create_session(
        self,
        total_frames: int,
        seed: int,
        symbol: str = "",
        keypoints: Sequence[int] = (),
    ) -> GameSession:
        session = GameSession(seed=seed, total_frames=total_frames, symbol=symbol, keypoints=tuple(keypoints))
        self.store.save(session)
        self._emit(
            session.id,
            events.SESSION_CREATED,
            seed=session.seed,
            symbol=session.symbol,
            total_frames=session.total_frames,
            keypoints=list(session.keypoints),
        )
        logger.info("Created session %s (%d frames, seed=%s)", session.id, session.total_frames, session.seed)
        return session

    def create_game(
        self,
        series: PriceSeries,
        seed: Optional[int] = None,
        min_count: Optional[int] = None,
        max_count: Optional[int] = None,
    ) -> GameSession:
        """
        Detect keypoints once and create a session with one frame per keypoint.
        The series is kept in memory for scoring; the seed is stored on the
        session so the same keypoints can be re-derived later.
        """
        seed = new_seed() if seed is None else int(seed)
        selection = self.detect_keypoints(series, min_count, max_count, seed)
        if not selection.keypoints:
            raise InsufficientDataError(
                series.symbol,
                f"no keypoints found in {len(series)} bars (failed detectors: {list(selection.failed_detectors)})",
            )
        session = self.create_session(
            total_frames=len(selection.keypoints),
            seed=seed,
            symbol=series.symbol,
            keypoints=selection.frame_indices,
        )
        self._series[session.id] = series
        return session

    def attach_series(self, session_id: str, series: PriceSeries) -> None:
        """Provide the price series for a session created with `create_session`."""
        self._load(session_id)
        self._series[session_id] = series

    # -- lifecycle -------------------------------------------------------

    def _transition(self, session_id: str, operation: str, action: Callable[[GameSession], None]) -> GameSession:
        with self._lock_for(session_id):
            session = self._load(session_id)
            before = session.status
            action(session)
            self.store.save(session)
        self._status_event(session_id, before, session.status, operation)
        if session.status.is_terminal:
            self._release(session_id)
        return session

    def start(self, session_id: str) -> GameSession:
        return self._transition(session_id, "start", lambda s: s.start())

    def pause(self, session_id: str) -> GameSession:
        return self._transition(session_id, "pause", lambda s: s.pause())

    def resume(self, session_id: str) -> GameSession:
        return self._transition(session_id, "resume", lambda s: s.resume())

    def complete(self, session_id: str) -> GameSession:
        def _complete(s: GameSession) -> None:
            s.complete()
            self._score_unscored(s)

        return self._transition(session_id, "complete", _complete)

    def cancel(self, session_id: str) -> GameSession:
        return self._transition(session_id, "cancel", lambda s: s.cancel())

    # -- decisions -------------------------------------------------------

    def submit_decision(
        self,
        session_id: str,
        frame_index: int,
        decision_type: Any,
        price: Any = None,
        quantity: Any = 1,
        response_time_ms: Optional[int] = None,
        client_id: Optional[str] = None,
    ) -> GameDecision:
        dtype = DecisionType.parse(decision_type)
        price_d = to_decimal(price)
        qty_d = to_decimal(quantity)
        deferred: Optional[GameDecision] = None

        with self._lock_for(session_id):
            session = self._load(session_id)
            replay = session.find_decision_by_client_id(client_id)
            if replay is not None:
                logger.debug("Session %s: client id %s already accepted", session_id, client_id)
                return replay

            session.validate_submission(int(frame_index), dtype, price_d, qty_d)
            before = session.status
            decision = GameDecision(
                session_id=session.id,
                frame_index=int(frame_index),
                type=dtype,
                price=price_d,
                quantity=qty_d,
                response_time_ms=response_time_ms,
                client_id=client_id,
                bar_index=session.current_keypoint,
            )
            session.add_decision(decision)

            is_last = session.current_frame + 1 >= session.total_frames
            if self.settings.async_scoring and not is_last:
                deferred = copy.deepcopy(decision)
            else:
                self._fold(session, decision, self._score(session, decision))
            if is_last:
                self._score_unscored(session)
            session.advance_frame()
            self.store.save(session)

        self._emit(
            session_id,
            events.DECISION_SUBMITTED,
            decision_id=decision.id,
            frame_index=decision.frame_index,
            bar_index=decision.bar_index,
            type=decision.type,
            price=decision.price,
            quantity=decision.quantity,
            response_time_ms=decision.response_time_ms,
            client_id=decision.client_id,
        )
        if decision.is_scored:
            self._emit(session_id, events.DECISION_SCORED, decision_id=decision.id, score=decision.score, pnl=decision.pnl)
        self._status_event(session_id, before, session.status, "submit_decision")

        if deferred is not None:
            self._schedule_scoring(session, deferred)
        if session.status.is_terminal:
            self._release(session_id)
        return copy.deepcopy(decision)

    def _timeout(
        self,
        session_id: str,
        operation: str,
        overdue_at: Optional[datetime] = None,
    ) -> Optional[GameSession]:
        # With `overdue_at`, the timeout only applies if the freshly loaded
        # session is still running and idle past the limit at that instant.
        with self._lock_for(session_id):
            session = self._load(session_id)
            if overdue_at is not None:
                if session.status is not SessionStatus.RUNNING:
                    return None
                if overdue_at - session.updated_at < timedelta(seconds=self.settings.decision_timeout_sec):
                    return None
            before = session.status
            frame = session.current_frame
            session.record_timeout()
            if session.current_frame + 1 >= session.total_frames:
                self._score_unscored(session)
            session.advance_frame()
            self.store.save(session)
        self._emit(session_id, events.TIMEOUT_RECORDED, frame_index=frame, timeout_count=session.timeout_count)
        self._status_event(session_id, before, session.status, operation)
        if session.status.is_terminal:
            self._release(session_id)
        return session

    def record_timeout(self, session_id: str) -> GameSession:
        """The player let the current frame expire: count it and move on."""
        return self._timeout(session_id, "record_timeout")

    def expire_if_overdue(self, session_id: str, now: Optional[datetime] = None) -> bool:
        """
        Record a timeout when a running session has seen no activity for
        `decision_timeout_sec`. Callers poll this; the engine keeps no timers.
        """
        now = now or datetime.now(timezone.utc)
        return self._timeout(session_id, "expire_if_overdue", overdue_at=now) is not None

    # -- scoring ---------------------------------------------------------

    def score(self, decision: GameDecision, historical: PriceSeries, future: PriceSeries) -> ScoringResult:
        return score_decision(self.scoring_rules, decision, historical, future)

    def _windows(self, session: GameSession, decision: GameDecision) -> Optional[Tuple[PriceSeries, PriceSeries]]:
        series = self._series.get(session.id)
        if series is None:
            return None
        idx = decision.bar_index if decision.bar_index is not None else decision.frame_index
        return (
            series.historical_window(idx, self.settings.history_bars),
            series.future_window(idx, self.settings.future_bars),
        )

    def _score(self, session: GameSession, decision: GameDecision) -> ScoringResult:
        windows = self._windows(session, decision)
        if windows is None:
            logger.warning("Session %s has no price series attached; scoring decision %s as neutral", session.id, decision.id)
            return ScoringResult.neutral("runner", "no_price_series")
        return self.score(decision, *windows)

    def _fold(self, session: GameSession, decision: GameDecision, result: ScoringResult) -> None:
        decision.apply_score(result)
        session.update_score(decision.score)
        session.update_pnl(decision.pnl)

    def _score_unscored(self, session: GameSession) -> None:
        """Score inline whatever async scoring has not delivered yet."""
        for d in session.decisions:
            if not d.is_scored:
                self._fold(session, d, self._score(session, d))

    def _schedule_scoring(self, session: GameSession, decision: GameDecision) -> None:
        windows = self._windows(session, decision)

        def _job() -> None:
            if windows is None:
                result = ScoringResult.neutral("runner", "no_price_series")
            else:
                result = self.score(decision, *windows)
            self.apply_score(decision.session_id, decision.id, result)

        fut = self._get_executor().submit(_job)
        with self._pending_guard:
            self._pending.add(fut)
        fut.add_done_callback(self._job_done)

    def _job_done(self, fut: Future) -> None:
        with self._pending_guard:
            self._pending.discard(fut)
        exc = fut.exception()
        if exc is not None:
            logger.error("Async scoring job failed", exc_info=exc)

    def apply_score(self, session_id: str, decision_id: str, result: ScoringResult) -> bool:
        """
        Fold an asynchronously computed score into its session. Returns False
        (and logs) when the session is gone or finished, or the decision is
        missing or already scored.
        """
        with self._lock_for(session_id):
            session = self.store.get(session_id)
            reason = None
            decision = None
            if session is None:
                reason = "session_not_found"
            elif session.status.is_terminal:
                reason = f"session_{session.status.value.lower()}"
            else:
                decision = session.find_decision(decision_id)
                if decision is None:
                    reason = "decision_not_found"
                elif decision.is_scored:
                    reason = "already_scored"
            if reason is None:
                self._fold(session, decision, result)
                self.store.save(session)

        if session is None or session.status.is_terminal:
            self._release(session_id)
        if reason is not None:
            logger.info("Discarding score for decision %s in session %s: %s", decision_id, session_id, reason)
            self._emit(session_id, events.SCORE_DISCARDED, decision_id=decision_id, reason=reason)
            return False
        self._emit(session_id, events.DECISION_SCORED, decision_id=decision_id, score=decision.score, pnl=decision.pnl)
        return True

    def wait_for_pending(self, timeout: Optional[float] = None) -> bool:
        """Block until queued scoring jobs finish. True if none are left."""
        with self._pending_guard:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_pending)
            self._executor = None

    # -- queries / housekeeping -----------------------------------------

    def get_session(self, session_id: str) -> GameSession:
        return self._load(session_id)

    def active_sessions(self) -> List[GameSession]:
        return [s for s in self.store.list() if s.is_active]

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        out = []
        for rank, s in enumerate(self.store.top_scoring(limit), start=1):
            row = s.summary()
            row["rank"] = rank
            out.append(row)
        return out

    def cleanup_expired(self, max_age: Optional[timedelta] = None, now: Optional[datetime] = None) -> List[str]:
        """Cancel unfinished sessions idle for longer than `max_age`."""
        max_age = max_age or timedelta(minutes=self.settings.session_timeout_minutes)
        now = now or datetime.now(timezone.utc)
        cancelled: List[str] = []
        for s in self.store.list():
            if s.status.is_terminal or now - s.updated_at <= max_age:
                continue
            try:
                self.cancel(s.id)
            except InvalidSessionStateError:
                # Finished while we were scanning.
                continue
            cancelled.append(s.id)
        if cancelled:
            logger.info("Cancelled %d expired sessions", len(cancelled))
        return cancelled

    def delete_session(self, session_id: str) -> None:
        with self._lock_for(session_id):
            if not self.store.delete(session_id):
                raise SessionNotFoundError(session_id)
        self._release(session_id)


def new_seed() -> int:
    """Fresh non-negative 63-bit seed (fits a signed SQLite INTEGER)."""
    return random.SystemRandom().getrandbits(_SEED_BITS)
