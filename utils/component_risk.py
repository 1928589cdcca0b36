"""
Component risk scorers.

Four independent scorers turn one evidence source into a 0-100 risk with
human-readable reasons, warnings and a 0-1 confidence:

  camera    -> CameraSignals (facial stress, agitation, focus, fatigue)
  impulse   -> ImpulseControlMetrics (go/no-go accuracy)
  focus     -> FocusStabilityMetrics (sustained attention)
  reaction  -> ReactionConsistencyMetrics (timing stability)

Scores map a 0-1 "goodness" (or "badness" for camera) through piecewise-linear
bands so typical performance lands in the 0-45 range and genuinely poor
performance climbs fast toward 100. Penalties are additive; floors guarantee
that catastrophic performance always reads as near-maximum risk.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from utils.camera_signals import CameraSignals
from utils.cognitive_metrics import (
    FocusStabilityMetrics,
    ImpulseControlMetrics,
    ReactionConsistencyMetrics,
)


@dataclass(frozen=True)
class ComponentEvaluation:
    """One scorer's verdict on its evidence source."""
    risk: float  # 0-100
    reasons: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    confidence: float = 0.0  # 0-1


@dataclass(frozen=True)
class UserBaseline:
    """Optional per-user reference values from earlier sessions."""
    accuracy: Optional[float] = None  # 0-1
    reaction_time_ms: Optional[float] = None
    reaction_time_std_dev: Optional[float] = None

    @classmethod
    def from_dict(cls, data) -> Optional["UserBaseline"]:
        if not data:
            return None
        if not isinstance(data, dict):
            raise ValueError("baseline must be an object")

        def opt(key: str) -> Optional[float]:
            v = data.get(key)
            if v is None:
                return None
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"baseline.{key} must be a number")
            if not math.isfinite(v):
                raise ValueError(f"baseline.{key} must be finite")
            return float(v)

        return cls(
            accuracy=opt("accuracy"),
            reaction_time_ms=opt("reactionTimeMs"),
            reaction_time_std_dev=opt("reactionTimeStdDev"),
        )


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return float(max(low, min(high, value)))


def _band(value: float, bands: Sequence[Tuple[float, float, float, float]], tail: Tuple[float, float, float]) -> float:
    """
    Piecewise-linear mapping.

    Each band is (threshold, base, anchor, slope) and applies when value > threshold:
    risk = base + (anchor - value) * slope. tail is (base, anchor, slope) for the rest.
    """
    for threshold, base, anchor, slope in bands:
        if value > threshold:
            return base + (anchor - value) * slope
    base, anchor, slope = tail
    return base + (anchor - value) * slope


# Signal labels for the "Stress indicators" reason
_STRESS_SIGNAL_LABELS: List[Tuple[str, str]] = [
    ("brow_tension", "brow tension"),
    ("jaw_clench", "jaw clenching"),
    ("micro_expression_tension", "micro-expressions"),
    ("gaze_instability", "gaze instability"),
    ("lip_compression", "lip compression"),
]


def evaluate_camera(camera: CameraSignals) -> ComponentEvaluation:
    focus_deficit = 1.0 - camera.focus
    raw = (
        camera.stress_level * 0.50
        + camera.agitation * 0.25
        + focus_deficit * 0.15
        + camera.fatigue * 0.10
    )
    if raw < 0.2:
        risk = raw * 125.0
    elif raw < 0.5:
        risk = 25.0 + (raw - 0.2) * 116.67
    elif raw < 0.8:
        risk = 60.0 + (raw - 0.5) * 83.33
    else:
        risk = 85.0 + (raw - 0.8) * 75.0

    if camera.raw.get("micro_expression_tension", 0.0) > 0.7:
        risk += 10.0
    if camera.raw.get("head_movement", 0.0) > 0.6:
        risk += 8.0
    if camera.is_high_stress:
        risk = max(risk, 65.0) + 10.0
    if camera.signal_quality < 0.2 and risk < 30:
        risk = max(risk, 25.0)
    risk = _clamp(risk)

    reasons: List[str] = []
    warnings: List[str] = []
    if camera.is_high_stress:
        reasons.append(f"High stress detected from facial analysis (score: {camera.stress_score}/100)")
        top = [label for key, label in _STRESS_SIGNAL_LABELS if camera.signals.get(key, 0) >= 60]
        if top:
            reasons.append(f"Stress indicators: {', '.join(top)}")
    elif camera.stress_level >= 0.7:
        reasons.append(f"Facial stress level high ({round(camera.stress_level * 100)}%)")
    if camera.agitation >= 0.6:
        reasons.append("Agitation indicators elevated")
    if focus_deficit >= 0.4:
        reasons.append("Focus instability detected in gaze patterns")
    if camera.fatigue >= 0.6:
        reasons.append("Eye fatigue indicators present")
    if camera.signal_quality < 0.35:
        warnings.append("Camera signal quality degraded")

    confidence = _clamp(camera.confidence * 0.6 + camera.signal_quality * 0.4, 0.0, 1.0)
    return ComponentEvaluation(risk, tuple(reasons), tuple(warnings), confidence)


def evaluate_impulse(metrics: ImpulseControlMetrics, baseline: Optional[UserBaseline] = None) -> ComponentEvaluation:
    accuracy = (metrics.go_accuracy + metrics.no_go_accuracy) / 2.0
    risk = _band(
        accuracy,
        [
            (0.9, 0.0, 1.0, 200.0),
            (0.75, 20.0, 0.9, 166.67),
            (0.6, 45.0, 0.75, 166.67),
            (0.4, 70.0, 0.6, 100.0),
        ],
        (90.0, 0.4, 25.0),
    )

    avg_rt = metrics.avg_reaction_time_ms
    if avg_rt > 1500:
        risk += 20.0
    elif avg_rt > 1000:
        risk += 15.0
    elif avg_rt > 800:
        risk += 8.0
    if baseline is not None and baseline.accuracy is not None and accuracy < baseline.accuracy - 0.15:
        risk += 18.0
    if accuracy < 0.3:
        risk = max(risk, 95.0)
    risk = _clamp(risk)

    reasons: List[str] = []
    warnings: List[str] = []
    if metrics.no_go_accuracy < 0.8:
        reasons.append("Impulse control lapses during inhibition trials")
    if metrics.go_accuracy < 0.85:
        reasons.append(f"Go trial accuracy low ({round(metrics.go_accuracy * 100)}%)")
    if metrics.impulsive_errors > 0:
        reasons.append(f"{metrics.impulsive_errors} impulsive error(s) detected")
    if metrics.response_consistency < 0.7:
        warnings.append("Reaction timing inconsistency observed")
    if avg_rt > 800:
        warnings.append(f"Slow reaction times detected (avg: {round(avg_rt)}ms)")

    volume = _clamp(metrics.total_trials / 12.0, 0.35, 1.0)
    confidence = _clamp(volume + metrics.response_consistency * 0.15, 0.35, 1.0)
    return ComponentEvaluation(risk, tuple(reasons), tuple(warnings), confidence)


def evaluate_focus(metrics: FocusStabilityMetrics) -> ComponentEvaluation:
    attention = metrics.sustained_attention
    risk = _band(
        attention,
        [
            (0.85, 0.0, 1.0, 133.33),
            (0.7, 20.0, 0.85, 166.67),
            (0.5, 45.0, 0.7, 150.0),
            (0.3, 75.0, 0.5, 100.0),
        ],
        (95.0, 0.3, 16.67),
    )

    missed = metrics.missed_matches
    if missed > 5:
        risk += 25.0
    elif missed > 3:
        risk += 15.0
    elif missed > 1:
        risk += 8.0
    if attention < 0.25:
        risk = max(risk, 98.0)
    risk = _clamp(risk)

    reasons: List[str] = []
    warnings: List[str] = []
    if attention < 0.7:
        reasons.append("Sustained attention fell below safe threshold")
    if missed > 0:
        warnings.append(f"{missed} target matches were missed")
    if metrics.false_alarms > 1:
        warnings.append("False alarms indicate vigilance drift")

    confidence = _clamp(metrics.total_stimuli / 60.0, 0.4, 1.0)
    return ComponentEvaluation(risk, tuple(reasons), tuple(warnings), confidence)


def evaluate_reaction(metrics: ReactionConsistencyMetrics, baseline: Optional[UserBaseline] = None) -> ComponentEvaluation:
    stability = metrics.stability_score
    risk = _band(
        stability,
        [
            (0.8, 0.0, 1.0, 100.0),
            (0.6, 20.0, 0.8, 125.0),
            (0.4, 45.0, 0.6, 150.0),
            (0.2, 75.0, 0.4, 100.0),
        ],
        (95.0, 0.2, 25.0),
    )

    if metrics.anticipations > 4:
        risk += 20.0
    elif metrics.anticipations > 2:
        risk += 12.0
    if metrics.late_responses > 4:
        risk += 18.0
    elif metrics.late_responses > 2:
        risk += 10.0
    if baseline is not None and baseline.reaction_time_std_dev is not None:
        delta = metrics.variability - baseline.reaction_time_std_dev
        if delta > 25:
            risk += min(0.3, delta / 120.0) * 20.0
    if stability < 0.25:
        risk = max(risk, 95.0)
    risk = _clamp(risk)

    reasons: List[str] = []
    warnings: List[str] = []
    if stability < 0.6:
        reasons.append("Reaction timing stability degraded")
    if metrics.anticipations > 0:
        warnings.append(f"{metrics.anticipations} anticipatory responses detected")
    if metrics.late_responses > 0:
        warnings.append(f"{metrics.late_responses} late responses recorded")

    confidence = _clamp(metrics.trials / 12.0, 0.35, 1.0)
    return ComponentEvaluation(risk, tuple(reasons), tuple(warnings), confidence)
