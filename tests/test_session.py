import unittest
from decimal import Decimal

import pytest

from errors import InvalidDecisionError, InvalidSessionStateError
from game import DecisionType, GameDecision, GameSession, SessionStatus
from game.types import to_decimal


def _running(total_frames: int = 3) -> GameSession:
    s = GameSession(seed=1, total_frames=total_frames, keypoints=tuple(range(10, 10 + total_frames)))
    s.start()
    return s


def _decision(session: GameSession, frame: int, kind="LONG", price=100.0, **kw) -> GameDecision:
    return GameDecision(session_id=session.id, frame_index=frame, type=kind, price=price if kind != "SKIP" else None, **kw)


def _move(session: GameSession, status: SessionStatus) -> None:
    if status is SessionStatus.CREATED:
        return
    session.start()
    if status is SessionStatus.PAUSED:
        session.pause()
    elif status is SessionStatus.COMPLETED:
        session.complete()
    elif status is SessionStatus.CANCELLED:
        session.cancel()


# (from_status, operation) -> resulting status, or None when illegal
TRANSITIONS = {
    (SessionStatus.CREATED, "start"): SessionStatus.RUNNING,
    (SessionStatus.CREATED, "pause"): None,
    (SessionStatus.CREATED, "resume"): None,
    (SessionStatus.CREATED, "complete"): None,
    (SessionStatus.CREATED, "cancel"): SessionStatus.CANCELLED,
    (SessionStatus.RUNNING, "start"): None,
    (SessionStatus.RUNNING, "pause"): SessionStatus.PAUSED,
    (SessionStatus.RUNNING, "resume"): None,
    (SessionStatus.RUNNING, "complete"): SessionStatus.COMPLETED,
    (SessionStatus.RUNNING, "cancel"): SessionStatus.CANCELLED,
    (SessionStatus.PAUSED, "start"): None,
    (SessionStatus.PAUSED, "pause"): None,
    (SessionStatus.PAUSED, "resume"): SessionStatus.RUNNING,
    (SessionStatus.PAUSED, "complete"): SessionStatus.COMPLETED,
    (SessionStatus.PAUSED, "cancel"): SessionStatus.CANCELLED,
    (SessionStatus.COMPLETED, "start"): None,
    (SessionStatus.COMPLETED, "pause"): None,
    (SessionStatus.COMPLETED, "resume"): None,
    (SessionStatus.COMPLETED, "complete"): None,
    (SessionStatus.COMPLETED, "cancel"): None,
    (SessionStatus.CANCELLED, "start"): None,
    (SessionStatus.CANCELLED, "pause"): None,
    (SessionStatus.CANCELLED, "resume"): None,
    (SessionStatus.CANCELLED, "complete"): None,
    (SessionStatus.CANCELLED, "cancel"): SessionStatus.CANCELLED,
}


@pytest.mark.parametrize("start_status,operation", sorted(TRANSITIONS, key=lambda k: (k[0].value, k[1])))
def test_state_machine_transitions(start_status, operation):
    session = GameSession(seed=0, total_frames=2)
    _move(session, start_status)
    expected = TRANSITIONS[(start_status, operation)]

    if expected is None:
        before = session.status
        with pytest.raises(InvalidSessionStateError):
            getattr(session, operation)()
        assert session.status is before
    else:
        getattr(session, operation)()
        assert session.status is expected


class GameSessionTests(unittest.TestCase):
    def test_construction_validation(self):
        with self.assertRaises(ValueError):
            GameSession(seed=1, total_frames=0)
        with self.assertRaises(ValueError):
            GameSession(seed=1, total_frames=3, keypoints=(1, 2))

    def test_start_sets_started_at(self):
        s = GameSession(seed=1, total_frames=1)
        self.assertIsNone(s.started_at)
        s.start()
        self.assertIsNotNone(s.started_at)
        self.assertTrue(s.is_active)

    def test_add_decision_updates_counts_and_response_mean(self):
        s = _running(3)
        for frame, rt in enumerate([100, None, 300]):
            s.add_decision(_decision(s, frame, response_time_ms=rt))

        self.assertEqual(s.decision_count, 3)
        self.assertEqual(s.response_samples, 2)
        self.assertAlmostEqual(s.avg_response_time_ms, 200.0)

    def test_add_decision_rejects_foreign_and_duplicate(self):
        s = _running(3)
        other = _running(3)
        with self.assertRaises(InvalidDecisionError):
            s.add_decision(_decision(other, 0))
        s.add_decision(_decision(s, 0))
        with self.assertRaises(InvalidDecisionError):
            s.add_decision(_decision(s, 0, kind="SHORT"))
        self.assertEqual(s.decision_count, 1)

    def test_validate_submission(self):
        s = _running(3)
        s.validate_submission(0, DecisionType.LONG, Decimal("100"), Decimal("1"))
        s.validate_submission(0, DecisionType.SKIP, None, Decimal("1"))

        with self.assertRaises(InvalidDecisionError):
            s.validate_submission(1, DecisionType.LONG, Decimal("100"), Decimal("1"))
        with self.assertRaises(InvalidDecisionError):
            s.validate_submission(0, DecisionType.SHORT, None, Decimal("1"))
        with self.assertRaises(InvalidDecisionError):
            s.validate_submission(0, DecisionType.SHORT, Decimal("0"), Decimal("1"))
        with self.assertRaises(InvalidDecisionError):
            s.validate_submission(0, DecisionType.LONG, Decimal("100"), Decimal("0"))
        with self.assertRaises(InvalidDecisionError):
            s.validate_submission(0, DecisionType.SKIP, Decimal("100"), Decimal("1"))

        s.pause()
        with self.assertRaises(InvalidSessionStateError):
            s.validate_submission(0, DecisionType.LONG, Decimal("100"), Decimal("1"))
        self.assertEqual(s.current_frame, 0)

    def test_advance_frame_auto_completes(self):
        s = _running(2)
        self.assertEqual(s.current_keypoint, 10)
        s.advance_frame()
        self.assertEqual(s.current_frame, 1)
        self.assertEqual(s.current_keypoint, 11)
        self.assertEqual(s.progress, 50.0)
        s.advance_frame()
        self.assertIs(s.status, SessionStatus.COMPLETED)
        self.assertIsNotNone(s.completed_at)
        self.assertIsNone(s.current_keypoint)
        with self.assertRaises(InvalidSessionStateError):
            s.advance_frame()

    def test_advance_frame_requires_running(self):
        s = _running(2)
        s.pause()
        with self.assertRaises(InvalidSessionStateError):
            s.advance_frame()
        self.assertEqual(s.current_frame, 0)

    def test_totals_are_fixed_point(self):
        s = _running(1)
        s.update_score(0.1)
        s.update_score(0.2)
        s.update_pnl(Decimal("-0.0000004"))
        self.assertEqual(s.total_score, Decimal("0.300000"))
        self.assertEqual(s.total_pnl, Decimal("0.000000"))
        s.record_timeout()
        self.assertEqual(s.timeout_count, 1)

    def test_summary(self):
        s = _running(3)
        won = _decision(s, 0)
        won.apply_score(type("R", (), {"score": 0.05, "pnl": 0.05})())
        lost = _decision(s, 1, kind="SHORT")
        lost.apply_score(type("R", (), {"score": -0.02, "pnl": -0.02})())
        s.add_decision(won)
        s.add_decision(lost)
        s.add_decision(_decision(s, 2, kind="SKIP"))

        summary = s.summary()
        self.assertEqual(summary["trade_count"], 2)
        self.assertEqual(summary["skip_count"], 1)
        self.assertEqual(summary["win_rate"], 0.5)
        self.assertEqual(summary["status"], "RUNNING")
        self.assertEqual(summary["total_score"], "0")

    def test_lookup_helpers(self):
        s = _running(2)
        d = _decision(s, 0, client_id="abc")
        s.add_decision(d)
        self.assertIs(s.find_decision(d.id), d)
        self.assertIs(s.find_decision_at(0), d)
        self.assertIs(s.find_decision_by_client_id("abc"), d)
        self.assertIsNone(s.find_decision_by_client_id(None))
        self.assertIsNone(s.find_decision_at(1))


class GameDecisionTests(unittest.TestCase):
    def test_normalization(self):
        d = GameDecision(session_id="s", frame_index=0, type="buy", price=0.1, quantity=2)
        self.assertIs(d.type, DecisionType.LONG)
        self.assertEqual(d.price, Decimal("0.100000"))
        self.assertEqual(d.quantity, Decimal("2.000000"))
        self.assertFalse(d.is_scored)

    def test_score_applied_once(self):
        d = GameDecision(session_id="s", frame_index=0, type="LONG", price=100)
        d.apply_score(type("R", (), {"score": 0.1, "pnl": 0.1})())
        self.assertEqual(d.score, Decimal("0.100000"))
        with self.assertRaises(InvalidDecisionError):
            d.apply_score(type("R", (), {"score": 0.2, "pnl": 0.2})())
        self.assertEqual(d.score, Decimal("0.100000"))

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValueError):
            DecisionType.parse("maybe")
        self.assertEqual(to_decimal(None), None)


if __name__ == "__main__":
    unittest.main()
