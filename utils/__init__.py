"""
Utilities package for TradePause Gate.

Pure algorithms for the trade gate: landmark geometry, temporal stress
stabilization, camera snapshots, cognitive test metrics, component risk
scoring, risk fusion, the decision state machine and the gating policy.
The MediaPipe detector lives in utils.mediapipe_detector and is imported
on demand.
"""

from .landmark_geometry import FrameAnchors, RawSignalSample, extract_signals
from .stress_stabilizer import SessionState, StressLevel, TemporalStabilizer
from .camera_signals import CameraSignals, build_camera_signals
from .cognitive_metrics import (
    TestMetrics,
    compute_focus_stability_metrics,
    compute_impulse_control_metrics,
    compute_reaction_consistency_metrics,
)
from .component_risk import ComponentEvaluation, UserBaseline
from .decision_engine import AssessmentDecision, OrderContext, Verdict, evaluate_assessment
from .face_detection_interface import FaceDetectorInterface, FaceDetectionResult
from .policy import Policy, get_policy, load_policy, set_policy

__all__ = [
    'FrameAnchors',
    'RawSignalSample',
    'extract_signals',
    'SessionState',
    'StressLevel',
    'TemporalStabilizer',
    'CameraSignals',
    'build_camera_signals',
    'TestMetrics',
    'compute_impulse_control_metrics',
    'compute_focus_stability_metrics',
    'compute_reaction_consistency_metrics',
    'ComponentEvaluation',
    'UserBaseline',
    'AssessmentDecision',
    'OrderContext',
    'Verdict',
    'evaluate_assessment',
    'FaceDetectorInterface',
    'FaceDetectionResult',
    'Policy',
    'get_policy',
    'load_policy',
    'set_policy',
]
