"""
Temporal Stress Stabilizer

Raw per-frame signals jump around: a blink, a head turn or a bad landmark fit can
move a single frame a long way. This module turns them into a steady stress score:

  1. Each signal gets its own exponential moving average (EMA).
  2. The smoothed signals are combined into one weighted composite (0-100).
  3. When most signals are calm the composite is compressed, so a relaxed face
     reads low instead of drifting upward from small noise.
  4. The first few frames are eased in, then the composite is smoothed again with
     a rate that slows down when the reading suddenly jumps.
  5. The result is scaled by frame confidence and passed through hysteresis, so
     the high-stress alert only turns on after a sustained run of high readings
     and only turns off after a sustained run of low ones.

All state lives in SessionState, which the caller owns and which only
TemporalStabilizer.update() mutates. Call state.reset() when a session restarts.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional

import numpy as np

from utils.landmark_geometry import FrameAnchors, RawSignalSample, SIGNAL_KEYS
from utils.signal_confidence import decay_confidence, estimate_frame_confidence


NORMAL_BLINK_RATE = 16.0  # blinks per minute
BLINK_RATE_VARIANCE = 6.0
BLINK_CLOSE_EAR = 0.20
BLINK_OPEN_EAR = 0.27
BLINK_MIN_SEC, BLINK_MAX_SEC = 0.045, 0.55
BLINK_WINDOW_SEC = 60.0
BLINK_HISTORY_SEC = 120.0

WARMUP_FRAMES = 3
CALIBRATION_FRAMES = 60
BASELINE_ALPHA = 0.03
RECENT_SCORES_MAX = 30
SCORE_HISTORY_MAX = 120
ROLLING_WINDOW = 40

SIGNAL_ALPHA: Dict[str, float] = {
    "blink_rate": 0.25,
    "mouth_asymmetry": 0.25,
    "nose_flare": 0.25,
    "micro_tremor": 0.25,
    "brow_tension": 0.30,
    "forehead_tension": 0.30,
    "jaw_clench": 0.30,
    "lip_press": 0.30,
    "eye_strain": 0.30,
    "cheek_tension": 0.30,
    "upper_lip_tension": 0.30,
    "chin_tension": 0.30,
    "eye_darting": 0.30,
    "micro_expression_tension": 0.30,
    "head_movement": 0.35,
    "gaze_instability": 0.35,
}

COMPOSITE_WEIGHTS: Dict[str, float] = {
    "brow_tension": 1.3,
    "forehead_tension": 1.1,
    "jaw_clench": 1.2,
    "lip_press": 0.95,
    "micro_expression_tension": 0.9,
    "gaze_instability": 0.6,
    "eye_darting": 0.5,
    "nose_flare": 0.75,
    "blink_rate_abnormal": 0.6,
    "head_movement": 0.3,
    "mouth_asymmetry": 0.35,
    "eye_strain": 0.7,
    "cheek_tension": 0.8,
    "upper_lip_tension": 0.75,
    "chin_tension": 0.65,
    "micro_tremor": 0.5,
}

# Signal is "calm" when below its limit
CALM_LIMITS: Dict[str, float] = {
    "brow_tension": 30,
    "jaw_clench": 30,
    "lip_press": 30,
    "gaze_instability": 40,
    "forehead_tension": 30,
    "nose_flare": 25,
    "eye_darting": 35,
    "eye_strain": 30,
    "cheek_tension": 35,
    "upper_lip_tension": 30,
    "chin_tension": 30,
    "micro_tremor": 25,
}

# Signals kept in rolling windows for the session summary
WINDOW_KEYS: List[str] = [
    "stress_score",
    "head_movement",
    "gaze_instability",
    "blink_rate",
    "micro_expression_tension",
    "brow_tension",
    "lip_press",
    "jaw_clench",
]


class StressLevel(Enum):
    """Stress level bands for a 0-100 score."""
    LOW = "low"        # 0-35
    MEDIUM = "medium"  # 36-65
    HIGH = "high"      # 66-100

    @classmethod
    def from_score(cls, score: float) -> "StressLevel":
        if score <= 35:
            return cls.LOW
        elif score <= 65:
            return cls.MEDIUM
        return cls.HIGH


def _initial_smoothed() -> Dict[str, float]:
    values = {k: 0.0 for k in SIGNAL_KEYS}
    values["eye_darting"] = 10.0
    values["blink_rate"] = NORMAL_BLINK_RATE
    values["blink_rate_abnormal"] = 0.0
    return values


@dataclass
class SessionState:
    """Per-session stabilizer state. Mutated only by TemporalStabilizer."""
    smoothed: Dict[str, float] = field(default_factory=_initial_smoothed)
    recent_scores: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_SCORES_MAX))
    score_history: Deque[int] = field(default_factory=lambda: deque(maxlen=SCORE_HISTORY_MAX))
    smoothed_score: float = 0.0
    high_streak: int = 0
    low_streak: int = 0
    is_high_stress: bool = False
    warmup_frames: int = 0
    calibration_frames: int = 0
    baseline_stress: Optional[float] = None  # diagnostic only
    consecutive_face_frames: int = 0
    last_confidence: float = 0.0
    last_stress_score: int = 0
    eye_closed: bool = False
    eye_closed_since: float = 0.0
    blink_events: Deque[tuple] = field(default_factory=deque)  # (timestamp, duration_sec)
    anchors: Optional[FrameAnchors] = None
    windows: Dict[str, Deque[float]] = field(
        default_factory=lambda: {k: deque(maxlen=ROLLING_WINDOW) for k in WINDOW_KEYS}
    )
    total_samples: int = 0
    valid_samples: int = 0
    started_at: Optional[float] = None
    last_timestamp: float = 0.0

    def reset(self) -> None:
        """Return to a fresh session."""
        fresh = SessionState()
        self.__dict__.update(fresh.__dict__)


@dataclass
class StabilizedFrame:
    """Result of one stabilizer update."""
    face_detected: bool
    stress_score: int  # 0-100, after confidence scaling
    is_high_stress: bool
    confidence: float  # 0-1
    smoothed: Dict[str, float]  # per-signal EMA values (0-100; blink_rate in blinks/min)
    composite: float = 0.0  # weighted composite before calm suppression
    calibrated: float = 0.0  # after calm suppression and warm-up
    eye_aspect_ratio: float = 0.0
    blinks_in_window: int = 0
    avg_blink_duration_ms: int = 0
    timestamp: float = 0.0


def blink_rate_abnormality(blink_rate: float) -> float:
    return float(np.clip(abs(blink_rate - NORMAL_BLINK_RATE) / BLINK_RATE_VARIANCE * 50.0, 0.0, 100.0))


class TemporalStabilizer:
    """
    Stateless engine over a caller-owned SessionState.

    Usage:
        stabilizer = TemporalStabilizer()
        state = SessionState()
        frame = stabilizer.update(state, extract_signals(lm, state.anchors, t), t)
    """

    def __init__(
        self,
        high_stress_threshold: float = 70.0,
        high_stress_min_frames: int = 10,
        clear_min_frames: int = 5,
    ):
        self.high_stress_threshold = float(high_stress_threshold)
        self.high_stress_min_frames = max(1, int(high_stress_min_frames))
        self.clear_min_frames = max(1, int(clear_min_frames))

    def update(self, state: SessionState, sample: RawSignalSample, timestamp: float) -> StabilizedFrame:
        """Fold one frame's sample into the session and return the stabilized reading."""
        ts = float(timestamp)
        if state.started_at is None:
            state.started_at = ts
        state.total_samples += 1
        state.last_timestamp = ts

        if not sample.face_detected:
            return self._no_face(state, ts)

        state.valid_samples += 1
        state.consecutive_face_frames += 1
        state.anchors = sample.anchors

        self._track_blink(state, sample.eye_aspect_ratio, ts)
        raw_rate = self._blink_rate(state, ts)
        self._smooth_signals(state, sample, raw_rate)

        composite = self._composite(state.smoothed)
        calibrated = self._calibrate(state, composite)
        self._smooth_composite(state, calibrated)

        confidence = estimate_frame_confidence(state.smoothed, state.consecutive_face_frames)
        state.last_confidence = confidence
        score = int(round(float(np.clip(state.smoothed_score * (0.5 + 0.5 * confidence), 0.0, 100.0))))
        state.last_stress_score = score
        state.score_history.append(score)
        self._apply_hysteresis(state, score)

        state.windows["stress_score"].append(float(score))
        for key in WINDOW_KEYS[1:]:
            state.windows[key].append(float(state.smoothed.get(key, 0.0)))

        recent = self._recent_blinks(state, ts)
        avg_duration = int(round(np.mean([d for _, d in recent]) * 1000.0)) if recent else 0
        return StabilizedFrame(
            face_detected=True,
            stress_score=score,
            is_high_stress=state.is_high_stress,
            confidence=confidence,
            smoothed=dict(state.smoothed),
            composite=composite,
            calibrated=calibrated,
            eye_aspect_ratio=float(sample.eye_aspect_ratio),
            blinks_in_window=len(recent),
            avg_blink_duration_ms=avg_duration,
            timestamp=ts,
        )

    def _no_face(self, state: SessionState, ts: float) -> StabilizedFrame:
        # Streaks and the alert flag are left as they were
        state.consecutive_face_frames = 0
        state.anchors = None
        state.eye_closed = False
        state.last_confidence = decay_confidence(state.last_confidence)
        state.last_stress_score = 0
        return StabilizedFrame(
            face_detected=False,
            stress_score=0,
            is_high_stress=state.is_high_stress,
            confidence=state.last_confidence,
            smoothed=dict(state.smoothed),
            timestamp=ts,
        )

    def _track_blink(self, state: SessionState, ear: float, ts: float) -> None:
        if ear < BLINK_CLOSE_EAR and not state.eye_closed:
            state.eye_closed = True
            state.eye_closed_since = ts
        elif ear > BLINK_OPEN_EAR and state.eye_closed:
            state.eye_closed = False
            duration = ts - state.eye_closed_since
            if BLINK_MIN_SEC <= duration <= BLINK_MAX_SEC:
                state.blink_events.append((ts, duration))
                while state.blink_events and state.blink_events[0][0] < ts - BLINK_HISTORY_SEC:
                    state.blink_events.popleft()

    @staticmethod
    def _recent_blinks(state: SessionState, ts: float) -> List[tuple]:
        cutoff = ts - BLINK_WINDOW_SEC
        return [e for e in state.blink_events if e[0] >= cutoff]

    def _blink_rate(self, state: SessionState, ts: float) -> float:
        recent = self._recent_blinks(state, ts)
        if not recent:
            return NORMAL_BLINK_RATE
        elapsed = (ts - recent[0][0]) or 0.001
        return float(np.clip(len(recent) / elapsed * 60.0, 2.0, 60.0))

    def _smooth_signals(self, state: SessionState, sample: RawSignalSample, raw_blink_rate: float) -> None:
        s = state.smoothed
        for key, alpha in SIGNAL_ALPHA.items():
            value = raw_blink_rate if key == "blink_rate" else sample.get(key)
            if not np.isfinite(value):
                value = 0.0
            s[key] = alpha * value + (1.0 - alpha) * s.get(key, 0.0)
        s["blink_rate_abnormal"] = blink_rate_abnormality(s["blink_rate"])

    @staticmethod
    def _composite(smoothed: Dict[str, float]) -> float:
        total_weight = sum(COMPOSITE_WEIGHTS.values())
        weighted = sum(
            float(np.clip(smoothed.get(k, 0.0), 0.0, 100.0)) / 100.0 * w
            for k, w in COMPOSITE_WEIGHTS.items()
        )
        return float(np.clip(weighted / total_weight * 100.0, 0.0, 100.0))

    def _calibrate(self, state: SessionState, composite: float) -> float:
        calm = sum(1 for k, limit in CALM_LIMITS.items() if state.smoothed.get(k, 0.0) < limit)
        value = composite
        if calm >= 9 and composite < 50:
            value *= 0.70
        elif calm >= 7 and composite < 40:
            value *= 0.85

        if state.warmup_frames < WARMUP_FRAMES:
            value *= 0.90 + state.warmup_frames / float(WARMUP_FRAMES) * 0.10
        state.warmup_frames += 1

        if state.calibration_frames < CALIBRATION_FRAMES:
            if state.baseline_stress is None:
                state.baseline_stress = value
            else:
                state.baseline_stress = BASELINE_ALPHA * value + (1.0 - BASELINE_ALPHA) * state.baseline_stress
            state.calibration_frames += 1
        return float(value)

    def _smooth_composite(self, state: SessionState, calibrated: float) -> None:
        warming_up = state.warmup_frames <= WARMUP_FRAMES
        alpha = 0.40 if warming_up else 0.20
        recent = list(state.recent_scores)
        if len(recent) >= 3:
            deviation = abs(calibrated - float(np.mean(recent[-5:])))
            if deviation > 20:
                alpha = 0.10
            elif deviation > 12:
                alpha = 0.15
        if state.smoothed_score == 0 and calibrated > 5:
            state.smoothed_score = 0.6 * calibrated
        else:
            state.smoothed_score = alpha * calibrated + (1.0 - alpha) * state.smoothed_score
        state.recent_scores.append(calibrated)

    def _apply_hysteresis(self, state: SessionState, score: int) -> None:
        if score >= self.high_stress_threshold:
            state.high_streak += 1
            state.low_streak = 0
            if state.high_streak >= self.high_stress_min_frames:
                state.is_high_stress = True
        else:
            state.low_streak += 1
            state.high_streak = 0
            if state.low_streak >= self.clear_min_frames:
                state.is_high_stress = False
