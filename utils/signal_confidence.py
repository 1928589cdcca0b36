"""
Per-frame confidence (0-1) for the camera stress estimate.

Blends how steady the head and gaze are, whether the blink rate is plausible,
whether the face is actually engaged (brow/forehead activity), breathing and
ocular steadiness, and how many consecutive frames had a face.
"""

from typing import Dict

import numpy as np


CONFIDENCE_FLOOR = 0.15
CONFIDENCE_CEILING = 0.99
NO_FACE_DECAY = 0.75
CONTINUITY_FRAMES = 10

CONFIDENCE_WEIGHTS: Dict[str, float] = {
    "stability": 0.28,
    "blink_plausibility": 0.15,
    "engagement": 0.20,
    "respiration": 0.10,
    "ocular_control": 0.12,
    "detection_continuity": 0.15,
}


def confidence_components(smoothed: Dict[str, float], consecutive_face_frames: int) -> Dict[str, float]:
    """Each confidence component in 0-1, from smoothed signal values."""
    def v(key: str) -> float:
        x = float(smoothed.get(key, 0.0))
        return x if np.isfinite(x) else 0.0

    return {
        "stability": 1.0 - min(1.0, (v("gaze_instability") + v("head_movement")) / 240.0),
        "blink_plausibility": 1.0 - min(1.0, v("blink_rate_abnormal") / 200.0),
        "engagement": min(1.0, (v("brow_tension") + v("forehead_tension")) / 200.0),
        "respiration": 1.0 - min(1.0, v("nose_flare") / 140.0),
        "ocular_control": 1.0 - min(1.0, v("eye_darting") / 130.0),
        "detection_continuity": min(1.0, max(0, consecutive_face_frames) / float(CONTINUITY_FRAMES)),
    }


def estimate_frame_confidence(smoothed: Dict[str, float], consecutive_face_frames: int) -> float:
    """Weighted confidence for a frame with a face, clamped to 0.15-0.99."""
    parts = confidence_components(smoothed, consecutive_face_frames)
    total = sum(parts[k] * w for k, w in CONFIDENCE_WEIGHTS.items())
    return float(np.clip(total, CONFIDENCE_FLOOR, CONFIDENCE_CEILING))


def decay_confidence(previous: float) -> float:
    """Confidence for a frame with no face: decays toward 0, no floor."""
    p = float(previous)
    if not np.isfinite(p):
        return 0.0
    return float(np.clip(p * NO_FACE_DECAY, 0.0, 1.0))
