"""
Cognitive Test Metrics

Each cognitive test runs its own trial loop on the client; when the loop ends the
trial list is reduced to one metrics bundle here:

  - Impulse control (go/no-go): accuracy on go and no-go trials, impulsive errors,
    reaction time and its consistency.
  - Focus stability (n-back style "matches previous"): hits, misses, false alarms,
    sustained attention.
  - Reaction consistency (simple reaction time): average, best/worst, variability,
    anticipations and late responses.

All functions are pure. Empty input yields zeroed metrics, never an exception.
Standard deviation is the population standard deviation (0 for one value or none).
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Iterable, List, Optional

import numpy as np


def _clamp01(value: float) -> float:
    return float(max(0.0, min(1.0, value)))


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def _std(values: List[float]) -> float:
    return float(np.std(values)) if len(values) > 1 else 0.0


def to_camel(name: str) -> str:
    """snake_case -> camelCase."""
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


class _CamelDictMixin:
    """camelCase dict round-trip for flat dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        return {to_camel(k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise ValueError(f"{cls.__name__} must be an object")
        kwargs = {}
        for f in fields(cls):
            key = to_camel(f.name)
            if key not in data or data[key] is None:
                continue
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            if not np.isfinite(value):
                raise ValueError(f"{key} must be finite")
            kwargs[f.name] = int(value) if f.type in (int, "int") else float(value)
        return cls(**kwargs)


# ============================================================================
# Trials
# ============================================================================

@dataclass(frozen=True)
class GoNoGoTrial:
    type: str  # "go" | "no-go"
    responded: bool
    correct: bool
    reaction_time_ms: Optional[float] = None
    premature: bool = False


@dataclass(frozen=True)
class FocusStimulus:
    matches_previous: bool
    responded: bool
    correct: bool
    reaction_time_ms: Optional[float] = None


@dataclass(frozen=True)
class ReactionTrial:
    reaction_time_ms: Optional[float] = None
    anticipatory: bool = False
    late: bool = False


# ============================================================================
# Metrics
# ============================================================================

@dataclass(frozen=True)
class ImpulseControlMetrics(_CamelDictMixin):
    go_accuracy: float = 0.0  # 0-1
    no_go_accuracy: float = 0.0  # 0-1
    avg_reaction_time_ms: float = 0.0
    reaction_std_dev_ms: float = 0.0
    impulsive_errors: int = 0
    premature_responses: int = 0
    response_consistency: float = 0.0  # 0-1
    total_trials: int = 0


@dataclass(frozen=True)
class FocusStabilityMetrics(_CamelDictMixin):
    total_stimuli: int = 0
    matches_presented: int = 0
    correct_matches: int = 0
    missed_matches: int = 0
    false_alarms: int = 0
    avg_reaction_time_ms: float = 0.0
    reaction_std_dev_ms: float = 0.0
    sustained_attention: float = 0.0  # 0-1


@dataclass(frozen=True)
class ReactionConsistencyMetrics(_CamelDictMixin):
    trials: int = 0
    average_ms: float = 0.0
    best_ms: float = 0.0
    worst_ms: float = 0.0
    variability: float = 0.0  # population std of reaction times (ms)
    anticipations: int = 0
    late_responses: int = 0
    stability_score: float = 0.0  # 0-1


@dataclass(frozen=True)
class TestMetrics:
    """The three bundles fed to fusion. Missing bundles default to zeroed (unavailable)."""
    __test__ = False  # not a pytest class

    impulse_control: ImpulseControlMetrics = ImpulseControlMetrics()
    focus_stability: FocusStabilityMetrics = FocusStabilityMetrics()
    reaction_consistency: ReactionConsistencyMetrics = ReactionConsistencyMetrics()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "impulseControl": self.impulse_control.to_dict(),
            "focusStability": self.focus_stability.to_dict(),
            "reactionConsistency": self.reaction_consistency.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TestMetrics":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("testMetrics must be an object")
        return cls(
            impulse_control=ImpulseControlMetrics.from_dict(data.get("impulseControl") or {}),
            focus_stability=FocusStabilityMetrics.from_dict(data.get("focusStability") or {}),
            reaction_consistency=ReactionConsistencyMetrics.from_dict(data.get("reactionConsistency") or {}),
        )


# ============================================================================
# Aggregators
# ============================================================================

def compute_impulse_control_metrics(trials: Iterable[GoNoGoTrial]) -> ImpulseControlMetrics:
    trials = list(trials)
    go = [t for t in trials if t.type == "go"]
    no_go = [t for t in trials if t.type != "go"]
    correct_go = [t for t in go if t.correct]
    rts = [float(t.reaction_time_ms) for t in correct_go if t.reaction_time_ms is not None]

    avg_rt = _mean(rts)
    std_rt = _std(rts)
    return ImpulseControlMetrics(
        go_accuracy=len(correct_go) / max(1, len(go)),
        no_go_accuracy=sum(1 for t in no_go if not t.responded) / max(1, len(no_go)),
        avg_reaction_time_ms=avg_rt,
        reaction_std_dev_ms=std_rt,
        impulsive_errors=sum(1 for t in no_go if t.responded),
        premature_responses=sum(1 for t in trials if t.premature),
        response_consistency=_clamp01(1.0 - std_rt / max(avg_rt, 1.0)) if rts else 0.0,
        total_trials=len(trials),
    )


def compute_focus_stability_metrics(stimuli: Iterable[FocusStimulus]) -> FocusStabilityMetrics:
    stimuli = list(stimuli)
    matches = [s for s in stimuli if s.matches_previous]
    hits = [s for s in matches if s.responded and s.correct]
    missed = sum(1 for s in matches if not s.responded)
    false_alarms = sum(1 for s in stimuli if not s.matches_previous and s.responded)
    rts = [float(s.reaction_time_ms) for s in hits if s.reaction_time_ms is not None]
    total = len(stimuli)
    return FocusStabilityMetrics(
        total_stimuli=total,
        matches_presented=len(matches),
        correct_matches=len(hits),
        missed_matches=missed,
        false_alarms=false_alarms,
        avg_reaction_time_ms=_mean(rts),
        reaction_std_dev_ms=_std(rts),
        sustained_attention=_clamp01(1.0 - (missed + false_alarms) / max(total, 1)) if total else 0.0,
    )


def compute_reaction_consistency_metrics(trials: Iterable[ReactionTrial]) -> ReactionConsistencyMetrics:
    trials = list(trials)
    if not trials:
        return ReactionConsistencyMetrics()
    rts = [float(t.reaction_time_ms) for t in trials if t.reaction_time_ms is not None]
    avg = _mean(rts)
    variability = _std(rts)
    return ReactionConsistencyMetrics(
        trials=len(trials),
        average_ms=avg,
        best_ms=min(rts) if rts else 0.0,
        worst_ms=max(rts) if rts else 0.0,
        variability=variability,
        anticipations=sum(1 for t in trials if t.anticipatory),
        late_responses=sum(1 for t in trials if t.late),
        stability_score=_clamp01(1.0 - variability / max(avg, 1.0)) if rts else 0.0,
    )


# ============================================================================
# Trial parsing (camelCase JSON from the trial loops)
# ============================================================================

def _optional_ms(item: Dict[str, Any]) -> Optional[float]:
    v = item.get("reactionTimeMs")
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not np.isfinite(v):
        raise ValueError("reactionTimeMs must be a finite number or null")
    return float(v)


def _items(data: Any, name: str) -> List[Dict[str, Any]]:
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(i, dict) for i in data):
        raise ValueError(f"{name} must be a list of objects")
    return data


def parse_go_no_go_trials(data: Any) -> List[GoNoGoTrial]:
    out = []
    for item in _items(data, "impulseControl trials"):
        kind = str(item.get("type", "")).lower()
        if kind not in ("go", "no-go", "nogo"):
            raise ValueError("trial type must be 'go' or 'no-go'")
        out.append(GoNoGoTrial(
            type="go" if kind == "go" else "no-go",
            responded=bool(item.get("responded", False)),
            correct=bool(item.get("correct", False)),
            reaction_time_ms=_optional_ms(item),
            premature=bool(item.get("premature", False)),
        ))
    return out


def parse_focus_stimuli(data: Any) -> List[FocusStimulus]:
    return [
        FocusStimulus(
            matches_previous=bool(item.get("matchesPrevious", False)),
            responded=bool(item.get("responded", False)),
            correct=bool(item.get("correct", False)),
            reaction_time_ms=_optional_ms(item),
        )
        for item in _items(data, "focusStability trials")
    ]


def parse_reaction_trials(data: Any) -> List[ReactionTrial]:
    return [
        ReactionTrial(
            reaction_time_ms=_optional_ms(item),
            anticipatory=bool(item.get("anticipatory", False)),
            late=bool(item.get("late", False)),
        )
        for item in _items(data, "reactionConsistency trials")
    ]


def metrics_from_trials(data: Optional[Dict[str, Any]]) -> TestMetrics:
    """Build TestMetrics from {"impulseControl": [...], "focusStability": [...], "reactionConsistency": [...]}."""
    if not data:
        return TestMetrics()
    if not isinstance(data, dict):
        raise ValueError("trials must be an object")
    return TestMetrics(
        impulse_control=compute_impulse_control_metrics(parse_go_no_go_trials(data.get("impulseControl"))),
        focus_stability=compute_focus_stability_metrics(parse_focus_stimuli(data.get("focusStability"))),
        reaction_consistency=compute_reaction_consistency_metrics(parse_reaction_trials(data.get("reactionConsistency"))),
    )
