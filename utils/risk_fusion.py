"""
Risk fusion: weights, composite risk, non-compensatory overrides and overall confidence.

A weighted average alone lets good scores hide a bad one (a perfect reaction test
should not cancel a failed impulse test). After the weighted composite is formed,
override rules raise it to a floor whenever any single component, or the cognitive
components together, are clearly unsafe. Overrides only ever raise the composite.

Only components that actually contributed (non-zero weight) take part in overrides
and in the high-component block.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from utils.camera_signals import CameraSignals
from utils.cognitive_metrics import TestMetrics
from utils.component_risk import ComponentEvaluation
from utils.policy import Policy


COMPONENTS = ("camera", "impulse", "focus", "reaction")
COGNITIVE = ("impulse", "focus", "reaction")

DEFAULT_WEIGHTS: Dict[str, float] = {
    "camera": 0.15,
    "impulse": 0.35,
    "focus": 0.30,
    "reaction": 0.20,
}

# (component threshold, composite floor), checked highest first
SINGLE_COMPONENT_FLOORS = ((95.0, 85.0), (90.0, 80.0), (80.0, 72.0))
COGNITIVE_MEAN_FLOORS = ((75.0, 70.0), (65.0, 62.0), (55.0, 52.0))

CONFIDENCE_MIN, CONFIDENCE_MAX = 0.25, 0.95


@dataclass(frozen=True)
class FusionResult:
    composite_risk: float  # 0-100, after overrides
    weighted_risk: float  # 0-100, before overrides
    weights: Dict[str, float]
    high_component_block: bool
    confidence: float  # 0-1
    signal_quality: float  # 0-1


def resolve_weights(
    camera: CameraSignals,
    tests: TestMetrics,
    policy: Optional[Policy] = None,
) -> Dict[str, float]:
    """
    Base weights with unavailable or policy-disabled sources zeroed, renormalized to sum to 1.
    Falls back to the default weights when nothing is available.
    """
    weights = dict(DEFAULT_WEIGHTS)
    if camera.signal_quality <= 0:
        weights["camera"] = 0.0
    if tests.impulse_control.total_trials <= 0:
        weights["impulse"] = 0.0
    if tests.focus_stability.total_stimuli <= 0:
        weights["focus"] = 0.0
    if tests.reaction_consistency.trials <= 0:
        weights["reaction"] = 0.0

    if policy is not None:
        if not policy.is_enabled("facialExpression"):
            weights["camera"] = 0.0
        if not policy.is_enabled("cognitiveTest"):
            for k in COGNITIVE:
                weights[k] = 0.0
        if not policy.is_enabled("behavioralBiometrics"):
            weights["reaction"] = 0.0

    total = sum(weights.values())
    if total <= 0:
        return dict(DEFAULT_WEIGHTS)
    return {k: v / total for k, v in weights.items()}


def combine_risk(risks: Dict[str, float], weights: Dict[str, float]) -> float:
    total = sum(float(risks.get(k, 0.0)) * float(weights.get(k, 0.0)) for k in COMPONENTS)
    return float(np.clip(total, 0.0, 100.0))


def apply_overrides(composite: float, risks: Dict[str, float], weights: Dict[str, float]) -> float:
    """Raise the composite to the highest floor any override rule demands."""
    active = [k for k in COMPONENTS if weights.get(k, 0.0) > 0]
    floor = 0.0

    top = max((risks.get(k, 0.0) for k in active), default=0.0)
    for threshold, value in SINGLE_COMPONENT_FLOORS:
        if top >= threshold:
            floor = max(floor, value)
            break

    cognitive = [risks.get(k, 0.0) for k in COGNITIVE if k in active]
    if cognitive:
        mean = float(np.mean(cognitive))
        for threshold, value in COGNITIVE_MEAN_FLOORS:
            if mean >= threshold:
                floor = max(floor, value)
                break
        if sum(1 for r in cognitive if r >= 85) >= 2:
            floor = max(floor, 80.0)
        elif sum(1 for r in cognitive if r >= 75) >= 2:
            floor = max(floor, 72.0)

    return float(np.clip(max(composite, floor), 0.0, 100.0))


def high_component_block(risks: Dict[str, float], weights: Dict[str, float], threshold: float) -> bool:
    """True when a single active component is unsafe enough to block regardless of the composite."""
    def active(k: str) -> bool:
        return weights.get(k, 0.0) > 0

    if active("camera") and risks.get("camera", 0.0) >= threshold + 8:
        return True
    if active("impulse") and risks.get("impulse", 0.0) >= threshold + 12:
        return True
    if (
        active("focus") and active("reaction")
        and risks.get("focus", 0.0) >= threshold
        and risks.get("reaction", 0.0) >= threshold
    ):
        return True
    return False


def compute_signal_quality(camera: CameraSignals, evaluations: Dict[str, ComponentEvaluation]) -> float:
    mean = float(np.mean([evaluations[k].confidence for k in COMPONENTS]))
    return float(np.clip(camera.signal_quality * 0.6 + mean * 0.4, 0.0, 1.0))


def aggregate_confidence(
    camera: CameraSignals,
    evaluations: Dict[str, ComponentEvaluation],
    tests: TestMetrics,
) -> float:
    """Overall 0.25-0.95 confidence from component confidences, signal quality, coherence and data volume."""
    conf = {k: evaluations[k].confidence for k in COMPONENTS}
    risk = {k: evaluations[k].risk for k in COMPONENTS}
    mean = float(np.mean(list(conf.values())))
    quality = compute_signal_quality(camera, evaluations)
    c = float(np.clip(camera.confidence * 0.4 + mean * 0.6, 0.0, 1.0))

    # Signal quality
    if quality >= 0.8:
        c = min(1.0, c * 1.3)
    elif quality >= 0.65:
        c = min(1.0, c * 1.15)
    elif quality >= 0.45:
        c = min(1.0, c * 1.05)
    elif quality < 0.3:
        c *= 0.7

    # Test performance
    p = conf["impulse"] * 0.3 + conf["focus"] * 0.3 + conf["reaction"] * 0.2 + conf["camera"] * 0.2
    if p > 0.85:
        c += 0.15
    elif p > 0.75:
        c += 0.10
    elif p > 0.65:
        c += 0.05
    elif p < 0.5:
        c = max(0.25, c - 0.1)

    # Coherence between components
    spread = max(abs(risk["camera"] - risk["impulse"]), abs(risk["focus"] - risk["reaction"]))
    if spread < 15:
        c += 0.08
    elif spread > 40:
        c = max(0.3, c - 0.05)

    # Data volume
    total = (
        tests.impulse_control.total_trials
        + tests.focus_stability.total_stimuli
        + tests.reaction_consistency.trials
    )
    if total > 50:
        c += 0.05
    elif total < 20:
        c = max(0.25, c - 0.05)

    return float(np.clip(c, CONFIDENCE_MIN, CONFIDENCE_MAX))


def fuse(
    camera: CameraSignals,
    tests: TestMetrics,
    evaluations: Dict[str, ComponentEvaluation],
    policy: Policy,
) -> FusionResult:
    weights = resolve_weights(camera, tests, policy)
    risks = {k: evaluations[k].risk for k in COMPONENTS}
    weighted = combine_risk(risks, weights)
    return FusionResult(
        composite_risk=apply_overrides(weighted, risks, weights),
        weighted_risk=weighted,
        weights=weights,
        high_component_block=high_component_block(risks, weights, policy.risk_threshold),
        confidence=aggregate_confidence(camera, evaluations, tests),
        signal_quality=compute_signal_quality(camera, evaluations),
    )
