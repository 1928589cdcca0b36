"""
Assessment Session.

Drives one pre-trade assessment: camera frames (or landmark arrays) go through the
landmark extractor and the temporal stabilizer one at a time, producing a
CameraSignals snapshot per frame. When the cognitive tests are done, evaluate()
fuses the latest snapshot with the test metrics into a decision and, when the
decision carries one, starts the session's cooldown.

Pipeline per frame: detect landmarks (optional) → extract raw signals with the
previous frame's anchors → stabilize + confidence → snapshot.

Only one frame may be in flight; an overlapping call raises FrameInFlightError
instead of queueing. stop() discards the stabilizer state without finalizing it.
"""

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

import config
from services.assessment_evaluator import evaluate_with_fallback
from services.cooldown_enforcer import CooldownEnforcer, CooldownState, get_enforcer
from utils.camera_signals import CameraSignals, build_camera_signals
from utils.cognitive_metrics import TestMetrics
from utils.component_risk import UserBaseline
from utils.decision_engine import AssessmentDecision, OrderContext
from utils.face_detection_interface import FaceDetectorInterface
from utils.landmark_geometry import extract_signals
from utils.policy import Policy
from utils.stress_stabilizer import SessionState, TemporalStabilizer

logger = logging.getLogger(__name__)


class FrameInFlightError(RuntimeError):
    """A frame was submitted while the previous one was still being processed."""


class SessionNotActiveError(RuntimeError):
    """Frame submitted to a session that was never started or has been stopped."""


class CooldownActiveError(RuntimeError):
    """A new assessment was requested while the session is cooling down."""


def _default_detector() -> FaceDetectorInterface:
    from utils.mediapipe_detector import MediaPipeFaceDetector
    return MediaPipeFaceDetector(
        min_detection_confidence=config.MIN_FACE_CONFIDENCE,
        min_tracking_confidence=config.MIN_FACE_CONFIDENCE,
    )


def default_stabilizer() -> TemporalStabilizer:
    return TemporalStabilizer(
        high_stress_threshold=config.HIGH_STRESS_THRESHOLD,
        high_stress_min_frames=config.HIGH_STRESS_MIN_FRAMES,
        clear_min_frames=config.HIGH_STRESS_CLEAR_FRAMES,
    )


class AssessmentSession:
    """
    One trader's assessment.

    Usage:
        session = AssessmentSession("default")
        session.start()
        signals = session.process(landmarks)        # once per frame
        decision = session.evaluate(order, tests)   # at the end
        session.stop()
    """

    def __init__(
        self,
        session_id: str = "default",
        detector_factory: Optional[Callable[[], FaceDetectorInterface]] = None,
        stabilizer: Optional[TemporalStabilizer] = None,
        enforcer: Optional[CooldownEnforcer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self._detector_factory = detector_factory or _default_detector
        self._detector: Optional[FaceDetectorInterface] = None
        self._stabilizer = stabilizer or default_stabilizer()
        self._enforcer = enforcer or get_enforcer()
        self._clock = clock
        self._frame_lock = threading.Lock()
        self._state = SessionState()
        self._snapshot = CameraSignals()
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Begin a fresh session. Any previous stabilizer state is discarded."""
        self._state = SessionState()
        self._snapshot = CameraSignals()
        self._active = True
        logger.info("Assessment session %s started", self.session_id)

    def stop(self) -> None:
        """Halt frame submission, release the detector and discard stabilizer state."""
        self._active = False
        self._state = SessionState()
        self._snapshot = CameraSignals()
        if self._detector is not None:
            self._detector.close()
            self._detector = None
        logger.info("Assessment session %s stopped", self.session_id)

    def process(self, landmarks: Optional[np.ndarray], timestamp: Optional[float] = None) -> CameraSignals:
        """
        Analyze one frame of landmarks (None means no face in this frame).

        Raises:
            SessionNotActiveError: The session is not started.
            FrameInFlightError: Another frame is still being processed.
        """
        if not self._active:
            raise SessionNotActiveError("No active assessment session")
        if not self._frame_lock.acquire(blocking=False):
            raise FrameInFlightError("A frame is already being processed")
        try:
            return self._process_locked(landmarks, timestamp)
        finally:
            self._frame_lock.release()

    def submit_frame(self, image_bgr: np.ndarray, timestamp: Optional[float] = None) -> CameraSignals:
        """Detect landmarks in a BGR frame, then process them like process()."""
        if not self._active:
            raise SessionNotActiveError("No active assessment session")
        if not self._frame_lock.acquire(blocking=False):
            raise FrameInFlightError("A frame is already being processed")
        try:
            if self._detector is None:
                self._detector = self._detector_factory()
            landmarks = self._detector.detect_primary(image_bgr)
            return self._process_locked(landmarks, timestamp)
        finally:
            self._frame_lock.release()

    def _process_locked(self, landmarks: Optional[np.ndarray], timestamp: Optional[float]) -> CameraSignals:
        ts = float(timestamp) if timestamp is not None else self._clock()
        state = self._state
        sample = extract_signals(landmarks, state.anchors, ts)
        frame = self._stabilizer.update(state, sample, ts)
        snapshot = build_camera_signals(state, frame)
        # stop() may have swapped the state while this frame was running
        if state is self._state and self._active:
            self._snapshot = snapshot
        return snapshot

    def camera_snapshot(self) -> CameraSignals:
        """Latest CameraSignals (a neutral empty snapshot before the first frame)."""
        return self._snapshot

    def evaluate(
        self,
        order_context: Optional[OrderContext],
        tests: TestMetrics,
        camera_signals: Optional[CameraSignals] = None,
        policy: Optional[Policy] = None,
        baseline: Optional[UserBaseline] = None,
    ) -> AssessmentDecision:
        """
        Fuse camera and test evidence into a decision and start its cooldown.

        Args:
            camera_signals: Snapshot to use; defaults to this session's latest.

        Raises:
            CooldownActiveError: A previous decision's cooldown is still running.
        """
        if self._enforcer.is_active(self.session_id):
            raise CooldownActiveError("Cooldown in progress; assessment unavailable until it ends")
        camera = camera_signals if camera_signals is not None else self._snapshot
        decision = evaluate_with_fallback(order_context, camera, tests, policy, baseline)
        if decision.cooldown_seconds:
            self._enforcer.start(self.session_id, decision.cooldown_seconds)
        logger.info(
            "Assessment %s: %s (risk=%s, confidence=%.2f)",
            self.session_id, decision.verdict.value, decision.composite_risk, decision.confidence,
        )
        return decision

    def cooldown_state(self) -> CooldownState:
        return self._enforcer.get_state(self.session_id)

    def abandon_cooldown(self) -> bool:
        return self._enforcer.abandon(self.session_id)
