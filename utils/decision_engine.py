"""
Decision State Machine

Turns the fused risk and confidence into one verdict for the pending trade:

  BLOCK     composite risk at or above the policy threshold, or a single component
            is critical on its own. Carries a long cooldown (120-300 s).
  COOLDOWN  risk is elevated (at or above max(45, threshold - 15)), or the
            assessment is too uncertain to trust (confidence < 0.40 with risk >= 30).
  ALLOW     everything else.

Rules are checked in that order, so raising risk can only move a verdict toward
BLOCK. Every cooldown-bearing verdict lasts at least the policy's base cooldown.

AssessmentDecision is the immutable record of one assessment; to_dict() gives the
field-stable JSON returned to callers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from utils.camera_signals import CameraSignals
from utils.cognitive_metrics import TestMetrics
from utils.component_risk import (
    ComponentEvaluation,
    UserBaseline,
    evaluate_camera,
    evaluate_focus,
    evaluate_impulse,
    evaluate_reaction,
)
from utils.policy import Policy, get_policy
from utils.risk_fusion import COMPONENTS, FusionResult, fuse


MAX_REASONS = 6
LOW_CONFIDENCE_NOTE = 0.6
LOW_CONFIDENCE_COOLDOWN = 0.40
FALLBACK_REASON = "System error during assessment - trading blocked as a precaution"
FALLBACK_MIN_COOLDOWN = 60


class Verdict(Enum):
    """Outcome of an assessment."""
    ALLOW = "allow"
    COOLDOWN = "cooldown"
    BLOCK = "block"


@dataclass(frozen=True)
class OrderContext:
    """The pending order. Not interpreted, only recorded with the decision."""
    instrument: Optional[str] = None
    size: Optional[float] = None
    order_type: Optional[str] = None
    side: Optional[str] = None
    leverage: Optional[float] = None
    current_pnl: Optional[float] = None
    recent_losses: Optional[int] = None
    time_of_day: Optional[str] = None
    market_volatility: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # unrecognized keys, kept as sent

    _KEYS = {
        "instrument": "instrument",
        "size": "size",
        "orderType": "order_type",
        "side": "side",
        "leverage": "leverage",
        "currentPnL": "current_pnl",
        "recentLosses": "recent_losses",
        "timeOfDay": "time_of_day",
        "marketVolatility": "market_volatility",
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OrderContext":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("orderContext must be an object")
        known = {cls._KEYS[k]: v for k, v in data.items() if k in cls._KEYS}
        extra = {k: v for k, v in data.items() if k not in cls._KEYS}
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for key, attr in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class AssessmentDecision:
    verdict: Verdict
    composite_risk: int  # 0-100
    confidence: float  # 0-1
    reasoning: Tuple[str, ...]
    cooldown_seconds: Optional[int] = None  # only on COOLDOWN / BLOCK
    component_risks: Dict[str, float] = field(default_factory=dict)
    weights: Dict[str, float] = field(default_factory=dict)
    signal_quality: float = 0.0
    order_context: OrderContext = field(default_factory=OrderContext)

    def __post_init__(self):
        if self.verdict is Verdict.ALLOW and self.cooldown_seconds is not None:
            raise ValueError("an allow decision cannot carry a cooldown")
        if self.verdict is not Verdict.ALLOW and (self.cooldown_seconds is None or self.cooldown_seconds <= 0):
            raise ValueError(f"a {self.verdict.value} decision requires a positive cooldown")

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "allowed": self.allowed,
            "decision": self.verdict.value,
            "emotionalRiskScore": int(self.composite_risk),
            "confidence": round(float(self.confidence), 2),
            "reasoning": list(self.reasoning),
        }
        if self.cooldown_seconds is not None:
            out["cooldownSeconds"] = int(self.cooldown_seconds)
        out["diagnostics"] = {
            "cameraScore": round(float(self.component_risks.get("camera", 0.0)), 1),
            "impulseScore": round(float(self.component_risks.get("impulse", 0.0)), 1),
            "focusScore": round(float(self.component_risks.get("focus", 0.0)), 1),
            "reactionScore": round(float(self.component_risks.get("reaction", 0.0)), 1),
            "compositeWeights": {k: round(float(v), 4) for k, v in self.weights.items()},
            "signalQuality": round(float(self.signal_quality), 2),
        }
        out["orderContext"] = self.order_context.to_dict()
        return out


def cooldown_threshold(risk_threshold: float) -> float:
    return max(45.0, risk_threshold - 15.0)


def decide(
    risk: int,
    confidence: float,
    policy: Policy,
    component_block: bool = False,
) -> Tuple[Verdict, List[str], Optional[int]]:
    """
    Apply the verdict rules.

    Returns:
        (verdict, headline reasons, cooldown seconds or None for ALLOW)
    """
    t = policy.risk_threshold
    base = max(0, int(policy.cooldown_duration))

    if risk >= t or component_block:
        if risk >= 80:
            headline = [f"Severe emotional instability detected ({risk}/100)", "Trading suspended for trader safety"]
        elif risk >= 70:
            headline = [f"High emotional risk detected ({risk}/100)", "Safety threshold exceeded - trading suspended"]
        elif risk >= t:
            headline = [f"Emotional risk score ({risk}) exceeds threshold ({int(round(t))})"]
        else:
            headline = ["Critical component risk exceeds policy threshold"]
        if confidence < LOW_CONFIDENCE_NOTE:
            headline.append("Low confidence in assessment - extra caution applied")
        if risk >= 85:
            seconds = 300
        elif risk >= 75:
            seconds = 240
        else:
            seconds = int(round(120 + max(0.0, risk - t) * 4))
        return Verdict.BLOCK, headline, max(seconds, base)

    if risk >= cooldown_threshold(t):
        headline = [f"Elevated risk detected ({risk}/100)", "Brief cooldown required before trading"]
        return Verdict.COOLDOWN, headline, max(int(round(60 + risk * 1.5)), base)

    if confidence < LOW_CONFIDENCE_COOLDOWN and risk >= 30:
        headline = [f"Low assessment confidence ({round(confidence * 100)}%)", "Additional assessment recommended"]
        return Verdict.COOLDOWN, headline, max(60, base)

    headline = [
        "Emotional state within safe parameters",
        f"Risk score: {risk}, Confidence: {round(confidence * 100)}%",
    ]
    return Verdict.ALLOW, headline, None


def build_reasoning(headline: List[str], evaluations: Dict[str, ComponentEvaluation]) -> Tuple[str, ...]:
    lines: List[str] = list(headline)
    for k in COMPONENTS:
        lines.extend(evaluations[k].reasons)
    for k in COMPONENTS:
        for w in evaluations[k].warnings:
            if w not in lines:
                lines.append(w)
    return tuple(lines[:MAX_REASONS])


def evaluate_components(
    camera: CameraSignals,
    tests: TestMetrics,
    baseline: Optional[UserBaseline] = None,
) -> Dict[str, ComponentEvaluation]:
    return {
        "camera": evaluate_camera(camera),
        "impulse": evaluate_impulse(tests.impulse_control, baseline),
        "focus": evaluate_focus(tests.focus_stability),
        "reaction": evaluate_reaction(tests.reaction_consistency, baseline),
    }


def evaluate_assessment(
    order_context: Optional[OrderContext],
    camera_signals: CameraSignals,
    tests: TestMetrics,
    policy: Optional[Policy] = None,
    baseline: Optional[UserBaseline] = None,
) -> AssessmentDecision:
    """
    Run the full end-of-session assessment: component scoring, fusion, verdict.

    Args:
        order_context: The pending order (recorded only).
        camera_signals: Latest camera snapshot.
        tests: Cognitive test metrics; zeroed bundles count as unavailable.
        policy: Gating policy; None uses the current in-memory policy.
        baseline: Optional per-user baseline for penalty rules.

    Returns:
        AssessmentDecision
    """
    policy = policy or get_policy()
    evaluations = evaluate_components(camera_signals, tests, baseline)
    fusion: FusionResult = fuse(camera_signals, tests, evaluations, policy)

    risk = int(round(fusion.composite_risk))
    verdict, headline, cooldown = decide(risk, fusion.confidence, policy, fusion.high_component_block)
    return AssessmentDecision(
        verdict=verdict,
        composite_risk=risk,
        confidence=fusion.confidence,
        reasoning=build_reasoning(headline, evaluations),
        cooldown_seconds=cooldown,
        component_risks={k: evaluations[k].risk for k in COMPONENTS},
        weights=fusion.weights,
        signal_quality=fusion.signal_quality,
        order_context=order_context or OrderContext(),
    )


def fallback_decision(policy: Optional[Policy] = None, order_context: Optional[OrderContext] = None) -> AssessmentDecision:
    """Conservative BLOCK used when the assessment could not be completed."""
    policy = policy or get_policy()
    return AssessmentDecision(
        verdict=Verdict.BLOCK,
        composite_risk=100,
        confidence=0.25,
        reasoning=(FALLBACK_REASON,),
        cooldown_seconds=max(FALLBACK_MIN_COOLDOWN, int(policy.cooldown_duration)),
        order_context=order_context or OrderContext(),
    )
