"""
Service layer tests.

Tests the cooldown enforcer, the time-boxed assessment evaluator and the
assessment session (frame gating, stop, cooldown enforcement).
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading
import time
import unittest
from unittest.mock import patch, MagicMock


def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _good_tests():
    from utils.cognitive_metrics import (
        TestMetrics, ImpulseControlMetrics, FocusStabilityMetrics, ReactionConsistencyMetrics,
    )
    return TestMetrics(
        impulse_control=ImpulseControlMetrics(go_accuracy=1.0, no_go_accuracy=1.0, avg_reaction_time_ms=400.0,
                                              response_consistency=0.9, total_trials=40),
        focus_stability=FocusStabilityMetrics(total_stimuli=60, sustained_attention=0.98),
        reaction_consistency=ReactionConsistencyMetrics(trials=20, average_ms=300.0, variability=30.0,
                                                        stability_score=0.9),
    )


def _failing_tests():
    from dataclasses import replace
    from utils.cognitive_metrics import ImpulseControlMetrics
    return replace(_good_tests(), impulse_control=ImpulseControlMetrics(
        go_accuracy=0.2, no_go_accuracy=0.2, impulsive_errors=8, total_trials=20,
    ))


class TestCooldownEnforcer(unittest.TestCase):
    """Test per-session cooldown countdowns."""

    def setUp(self):
        from services.cooldown_enforcer import CooldownEnforcer
        self.fast = CooldownEnforcer(tick_seconds=0.01)
        self.slow = CooldownEnforcer(tick_seconds=30)

    def tearDown(self):
        self.fast.shutdown()
        self.slow.shutdown()

    def test_start_reports_state(self):
        """A started countdown is active with its full duration."""
        state = self.slow.start("s1", 45)
        self.assertTrue(state.active)
        self.assertEqual(state.remaining_seconds, 45)
        self.assertEqual(self.slow.get_state("s1").to_dict(),
                         {"sessionId": "s1", "active": True, "remainingSeconds": 45, "totalSeconds": 45})
        self.assertFalse(self.slow.is_active("other"))

    def test_countdown_expires(self):
        """Each tick removes a second; at zero the session is idle again."""
        self.fast.start("s1", 3)
        self.assertTrue(_wait_until(lambda: not self.fast.is_active("s1")))
        self.assertEqual(self.fast.get_state("s1").remaining_seconds, 0)

    def test_rejects_non_positive(self):
        """Zero or negative durations raise ValueError."""
        with self.assertRaises(ValueError):
            self.slow.start("s1", 0)

    def test_restart_replaces(self):
        """Starting again replaces the running countdown."""
        self.slow.start("s1", 100)
        self.slow.start("s1", 5)
        self.assertEqual(self.slow.get_state("s1").total_seconds, 5)

    def test_abandon(self):
        """Abandon ends the countdown early and logs it."""
        self.slow.start("s1", 100)
        with self.assertLogs("services.cooldown_enforcer", level="WARNING"):
            self.assertTrue(self.slow.abandon("s1"))
        self.assertFalse(self.slow.is_active("s1"))
        self.assertFalse(self.slow.abandon("s1"))

    def test_sessions_are_independent(self):
        """One session's cooldown does not affect another."""
        self.slow.start("a", 100)
        self.assertTrue(self.slow.is_active("a"))
        self.assertFalse(self.slow.is_active("b"))

    def test_get_enforcer_returns_singleton(self):
        """get_enforcer should return the same instance on subsequent calls."""
        from services.cooldown_enforcer import get_enforcer
        self.assertIs(get_enforcer(), get_enforcer())


class TestAssessmentEvaluator(unittest.TestCase):
    """Test the fallback behavior of the time-boxed evaluator."""

    def setUp(self):
        from utils.camera_signals import CameraSignals
        from utils.policy import Policy
        self.camera = CameraSignals()
        self.policy = Policy(risk_threshold=60, cooldown_duration=30)

    def test_success_passes_through(self):
        """A normal evaluation returns the real decision."""
        from services.assessment_evaluator import evaluate_with_fallback
        d = evaluate_with_fallback(None, self.camera, _good_tests(), self.policy)
        self.assertTrue(d.allowed)

    def test_exception_returns_fallback(self):
        """An evaluator error becomes the fallback block."""
        from services.assessment_evaluator import evaluate_with_fallback
        from utils.decision_engine import Verdict, FALLBACK_REASON

        def broken(*args):
            raise RuntimeError("boom")

        with self.assertLogs("services.assessment_evaluator", level="WARNING"):
            d = evaluate_with_fallback(None, self.camera, _good_tests(), self.policy, evaluator=broken)
        self.assertEqual(d.verdict, Verdict.BLOCK)
        self.assertEqual(d.composite_risk, 100)
        self.assertEqual(d.reasoning, (FALLBACK_REASON,))

    def test_timeout_returns_fallback(self):
        """An evaluator that runs past the budget becomes the fallback block."""
        from services.assessment_evaluator import evaluate_with_fallback
        from utils.decision_engine import Verdict, evaluate_assessment
        release = threading.Event()

        def slow(*args):
            release.wait(2.0)
            return evaluate_assessment(*args)

        try:
            with self.assertLogs("services.assessment_evaluator", level="WARNING"):
                d = evaluate_with_fallback(None, self.camera, _good_tests(), self.policy,
                                           timeout_sec=0.05, evaluator=slow)
        finally:
            release.set()
        self.assertEqual(d.verdict, Verdict.BLOCK)
        self.assertEqual(d.confidence, 0.25)
        self.assertEqual(d.cooldown_seconds, 60)

    def test_hung_evaluations_do_not_starve_later_ones(self):
        """After several timed-out evaluations are still running, a normal one still succeeds."""
        from services.assessment_evaluator import evaluate_with_fallback
        from utils.decision_engine import Verdict, evaluate_assessment
        release = threading.Event()

        def hung(*args):
            release.wait(5.0)
            return evaluate_assessment(*args)

        try:
            with self.assertLogs("services.assessment_evaluator", level="WARNING"):
                for _ in range(3):
                    d = evaluate_with_fallback(None, self.camera, _good_tests(), self.policy,
                                               timeout_sec=0.05, evaluator=hung)
                    self.assertEqual(d.verdict, Verdict.BLOCK)
            d = evaluate_with_fallback(None, self.camera, _good_tests(), self.policy, timeout_sec=2.0)
            self.assertTrue(d.allowed)
        finally:
            release.set()


class TestAssessmentSession(unittest.TestCase):
    """Test the per-trader assessment session."""

    def setUp(self):
        from assessment_session import AssessmentSession
        from services.cooldown_enforcer import CooldownEnforcer
        self.enforcer = CooldownEnforcer(tick_seconds=30)
        self.detector = MagicMock()
        self.factory = MagicMock(return_value=self.detector)
        self.session = AssessmentSession("trader-1", detector_factory=self.factory, enforcer=self.enforcer)

    def tearDown(self):
        self.enforcer.shutdown()

    def test_process_requires_start(self):
        """Frames before start() are refused."""
        from assessment_session import SessionNotActiveError
        from tests.fixtures.synthetic_landmarks import neutral_face
        with self.assertRaises(SessionNotActiveError):
            self.session.process(neutral_face(), 1.0)

    def test_process_landmarks(self):
        """Each processed frame updates the snapshot."""
        from tests.fixtures.synthetic_landmarks import neutral_face
        self.session.start()
        cam = self.session.process(neutral_face(), 1.0)
        self.assertTrue(cam.face_detected)
        self.assertEqual(cam.samples, 1)
        cam = self.session.process(None, 1.033)
        self.assertFalse(cam.face_detected)
        self.assertEqual(self.session.camera_snapshot().signal_quality, 0.5)

    def test_session_without_face_decides_on_tests_alone(self):
        """A whole session with no face gives zero confidence and quality; fusion uses cognitive weights only."""
        self.session.start()
        for i in range(90):
            self.session.process(None, 1.0 + i / 30.0)
        cam = self.session.camera_snapshot()
        self.assertEqual(cam.signal_quality, 0.0)
        self.assertEqual(cam.confidence, 0.0)
        self.assertFalse(cam.face_detected)
        d = self.session.evaluate(None, _good_tests())
        self.assertTrue(d.allowed)
        self.assertEqual(d.weights["camera"], 0.0)
        self.assertAlmostEqual(sum(d.weights[k] for k in ("impulse", "focus", "reaction")), 1.0)

    def test_confidence_decays_after_face_is_lost(self):
        """Confidence falls by 0.75 per frame once the face disappears."""
        from tests.fixtures.synthetic_landmarks import neutral_face
        self.session.start()
        for i in range(30):
            self.session.process(neutral_face(), 1.0 + i / 30.0)
        start_conf = self.session.camera_snapshot().confidence
        self.assertGreaterEqual(start_conf, 0.15)
        for i in range(30):
            self.session.process(None, 2.0 + i / 30.0)
        cam = self.session.camera_snapshot()
        self.assertAlmostEqual(cam.confidence, start_conf * 0.75 ** 30, places=6)
        self.assertLess(cam.confidence, 0.001)
        self.assertAlmostEqual(cam.signal_quality, 0.5)

    def test_frame_in_flight_is_refused(self):
        """A second frame while one is processing raises instead of queueing."""
        from assessment_session import FrameInFlightError
        from tests.fixtures.synthetic_landmarks import neutral_face
        self.session.start()
        self.session._frame_lock.acquire()
        try:
            with self.assertRaises(FrameInFlightError):
                self.session.process(neutral_face(), 1.0)
        finally:
            self.session._frame_lock.release()

    def test_submit_frame_uses_detector(self):
        """Image frames go through the detector, created once on first use."""
        import numpy as np
        from tests.fixtures.synthetic_landmarks import neutral_face
        self.detector.detect_primary.return_value = neutral_face()
        self.session.start()
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        self.session.submit_frame(image, 1.0)
        cam = self.session.submit_frame(image, 1.033)
        self.assertTrue(cam.face_detected)
        self.assertEqual(cam.samples, 2)
        self.factory.assert_called_once()

    def test_stop_discards_state(self):
        """stop() ends the session, closes the detector and drops camera state."""
        import numpy as np
        from assessment_session import SessionNotActiveError
        from tests.fixtures.synthetic_landmarks import neutral_face
        self.detector.detect_primary.return_value = neutral_face()
        self.session.start()
        self.session.submit_frame(np.zeros((10, 10, 3), dtype=np.uint8), 1.0)
        self.session.stop()
        self.assertFalse(self.session.is_active)
        self.assertEqual(self.session.camera_snapshot().samples, 0)
        self.detector.close.assert_called_once()
        with self.assertRaises(SessionNotActiveError):
            self.session.process(neutral_face(), 2.0)

    def test_allow_starts_no_cooldown(self):
        """An ALLOW decision leaves the session free."""
        self.session.start()
        d = self.session.evaluate(None, _good_tests())
        self.assertTrue(d.allowed)
        self.assertFalse(self.session.cooldown_state().active)

    def test_block_starts_cooldown_and_gates_next_evaluation(self):
        """A BLOCK starts its cooldown; a new evaluation is refused until it ends."""
        from assessment_session import CooldownActiveError
        from utils.decision_engine import Verdict
        d = self.session.evaluate(None, _failing_tests())
        self.assertEqual(d.verdict, Verdict.BLOCK)
        state = self.session.cooldown_state()
        self.assertTrue(state.active)
        self.assertEqual(state.total_seconds, d.cooldown_seconds)
        with self.assertRaises(CooldownActiveError):
            self.session.evaluate(None, _good_tests())
        self.assertTrue(self.session.abandon_cooldown())
        self.assertTrue(self.session.evaluate(None, _good_tests()).allowed)

    def test_fallback_decision_is_enforced(self):
        """A failed evaluation still results in an enforced cooldown."""
        from utils.decision_engine import fallback_decision
        with patch("assessment_session.evaluate_with_fallback", return_value=fallback_decision()):
            d = self.session.evaluate(None, _good_tests())
        self.assertEqual(d.composite_risk, 100)
        self.assertTrue(self.session.cooldown_state().active)


if __name__ == "__main__":
    unittest.main()
