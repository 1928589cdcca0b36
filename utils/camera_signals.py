"""
Camera signals snapshot.

CameraSignals is the immutable per-frame view of the camera pipeline that the
fusion step consumes. Besides the current frame's stress score it carries
rolling (last 40 face frames) summary fields: stress level, agitation, focus,
fatigue and signal quality, all 0-1.

Serializes to camelCase JSON (to_dict) and parses back (from_dict) so clients
can submit a snapshot captured elsewhere.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from utils.cognitive_metrics import to_camel
from utils.stress_stabilizer import (
    NORMAL_BLINK_RATE,
    SessionState,
    StabilizedFrame,
    StressLevel,
)


DEFAULT_GAZE_INSTABILITY = 20.0  # assumed before any face frame


def _clamp01(value: float) -> float:
    v = float(value)
    if not np.isfinite(v):
        return 0.0
    return float(max(0.0, min(1.0, v)))


def to_snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


@dataclass(frozen=True)
class CameraSignals:
    """Immutable camera snapshot."""
    face_detected: bool = False
    stress_score: int = 0  # current frame, 0-100
    level: StressLevel = StressLevel.LOW
    is_high_stress: bool = False
    metrics: Dict[str, float] = field(default_factory=dict)  # smoothed per-signal values (0-100)
    stress_level: float = 0.0  # rolling, 0-1
    agitation: float = 0.0
    focus: float = 1.0
    fatigue: float = 0.0
    confidence: float = 0.0
    signal_quality: float = 0.0  # valid / total samples
    raw: Dict[str, float] = field(default_factory=dict)  # 0-1 except blink_rate (per minute)
    signals: Dict[str, int] = field(default_factory=dict)  # rounded 0-100
    samples: int = 0
    duration_ms: int = 0
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faceDetected": self.face_detected,
            "stressScore": int(self.stress_score),
            "level": self.level.value,
            "isHighStress": bool(self.is_high_stress),
            "metrics": {to_camel(k): round(float(v), 2) for k, v in self.metrics.items()},
            "stressLevel": round(self.stress_level, 4),
            "agitation": round(self.agitation, 4),
            "focus": round(self.focus, 4),
            "fatigue": round(self.fatigue, 4),
            "confidence": round(self.confidence, 4),
            "signalQuality": round(self.signal_quality, 4),
            "raw": {to_camel(k): round(float(v), 4) for k, v in self.raw.items()},
            "signals": {to_camel(k): int(v) for k, v in self.signals.items()},
            "samples": int(self.samples),
            "durationMs": int(self.duration_ms),
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraSignals":
        """
        Parse a camelCase dict (as produced by to_dict or sent by a client).

        Missing fields take neutral defaults. Raises ValueError for non-numeric values.
        """
        if not isinstance(data, dict):
            raise ValueError("cameraSignals must be an object")

        def num(key: str, default: float) -> float:
            v = data.get(key, default)
            if v is None:
                return default
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"cameraSignals.{key} must be a number")
            if not np.isfinite(v):
                raise ValueError(f"cameraSignals.{key} must be finite")
            return float(v)

        def num_map(key: str) -> Dict[str, float]:
            m = data.get(key) or {}
            if not isinstance(m, dict):
                raise ValueError(f"cameraSignals.{key} must be an object")
            out = {}
            for k, v in m.items():
                if isinstance(v, bool) or not isinstance(v, (int, float)):
                    raise ValueError(f"cameraSignals.{key}.{k} must be a number")
                if not np.isfinite(v):
                    raise ValueError(f"cameraSignals.{key}.{k} must be finite")
                out[to_snake(k)] = float(v)
            return out

        stress_score = int(round(max(0.0, min(100.0, num("stressScore", 0.0)))))
        level_raw = data.get("level")
        try:
            level = StressLevel(level_raw) if level_raw else StressLevel.from_score(stress_score)
        except ValueError:
            raise ValueError("cameraSignals.level must be one of low, medium, high")
        notes = data.get("notes") or []
        if not isinstance(notes, list):
            raise ValueError("cameraSignals.notes must be a list")

        return cls(
            face_detected=bool(data.get("faceDetected", False)),
            stress_score=stress_score,
            level=level,
            is_high_stress=bool(data.get("isHighStress", False)),
            metrics=num_map("metrics"),
            stress_level=_clamp01(num("stressLevel", 0.0)),
            agitation=_clamp01(num("agitation", 0.0)),
            focus=_clamp01(num("focus", 1.0)),
            fatigue=_clamp01(num("fatigue", 0.0)),
            confidence=_clamp01(num("confidence", 0.0)),
            signal_quality=_clamp01(num("signalQuality", 0.0)),
            raw=num_map("raw"),
            signals={k: int(round(v)) for k, v in num_map("signals").items()},
            samples=max(0, int(num("samples", 0))),
            duration_ms=max(0, int(num("durationMs", 0))),
            notes=tuple(str(n) for n in notes),
        )


def _window_mean(state: SessionState, key: str, default: float) -> float:
    values = state.windows.get(key)
    if not values:
        return default
    return float(np.mean(values))


def _scan_notes(state: SessionState, quality: float) -> Tuple[str, ...]:
    if state.valid_samples == 0:
        return ("Searching for face...",)
    if quality < 0.5:
        return ("Face detection unstable - please look directly at camera",)
    if state.valid_samples < 5:
        return ("Face detected - analyzing...",)
    if quality < 0.6:
        return ("Active analysis in progress", "Low signal quality detected")
    return ("Active analysis in progress",)


def build_camera_signals(state: SessionState, frame: Optional[StabilizedFrame] = None) -> CameraSignals:
    """
    Snapshot the session after a stabilizer update.

    Args:
        state: Session state (read only).
        frame: The latest stabilized frame, or None before any frame.
    """
    quality = state.valid_samples / state.total_samples if state.total_samples else 0.0

    avg_stress = _window_mean(state, "stress_score", 0.0)
    avg_blink = _window_mean(state, "blink_rate", NORMAL_BLINK_RATE)
    avg_head = _window_mean(state, "head_movement", 0.0)
    avg_gaze = _window_mean(state, "gaze_instability", DEFAULT_GAZE_INSTABILITY)
    avg_micro = _window_mean(state, "micro_expression_tension", 0.0)
    avg_brow = _window_mean(state, "brow_tension", 0.0)
    avg_lip = _window_mean(state, "lip_press", 0.0)
    avg_jaw = _window_mean(state, "jaw_clench", 0.0)
    blink_dev = abs(avg_blink - NORMAL_BLINK_RATE)

    score = frame.stress_score if frame is not None else 0
    duration = 0
    if state.started_at is not None:
        duration = int(round(max(0.0, state.last_timestamp - state.started_at) * 1000.0))

    return CameraSignals(
        face_detected=bool(frame.face_detected) if frame is not None else False,
        stress_score=int(score),
        level=StressLevel.from_score(score),
        is_high_stress=state.is_high_stress,
        metrics=dict(frame.smoothed) if frame is not None else {},
        stress_level=_clamp01(avg_stress / 100.0),
        agitation=_clamp01((avg_head + avg_gaze) / 200.0),
        focus=_clamp01(1.0 - avg_gaze / 100.0),
        fatigue=_clamp01((blink_dev / NORMAL_BLINK_RATE + avg_micro / 100.0) / 2.0),
        confidence=_clamp01(state.last_confidence),
        signal_quality=_clamp01(quality),
        raw={
            "blink_rate": avg_blink,
            "brow_tension": avg_brow / 100.0,
            "gaze_stability": _clamp01(1.0 - avg_gaze / 100.0),
            "head_movement": avg_head / 100.0,
            "micro_expression_tension": avg_micro / 100.0,
            "lip_compression": avg_lip / 100.0,
            "jaw_clench": avg_jaw / 100.0,
        },
        signals={
            "brow_tension": int(round(avg_brow)),
            "jaw_clench": int(round(avg_jaw)),
            "blink_rate_abnormal": int(round(min(100.0, blink_dev / NORMAL_BLINK_RATE * 100.0))),
            "lip_compression": int(round(avg_lip)),
            "micro_expression_tension": int(round(avg_micro)),
            "head_movement": int(round(avg_head)),
            "gaze_instability": int(round(avg_gaze)),
        },
        samples=state.valid_samples,
        duration_ms=duration,
        notes=_scan_notes(state, quality),
    )
