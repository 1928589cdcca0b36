"""
Landmark Geometry Extractor

Turns one frame of normalized MediaPipe FaceMesh landmarks into raw facial
stress signals (0-100 each). Every signal is a ratio of landmark distances
compared against a relaxed-face constant, then passed through a power curve
so small deviations show up while extreme ones saturate near 100.

This module keeps no state. Motion signals (head movement, gaze drift, eye
darting, micro tremor) need the previous frame, so the caller passes the last
FrameAnchors in and stores the new ones returned on the sample.

Coordinates are normalized (0-1, as MediaPipe reports them). Indices that the
landmark array does not contain are treated as missing; a signal that needs a
missing point falls back to its neutral value.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np


# MediaPipe FaceMesh indices (468 points, 478 with iris refinement)
LEFT_EYE = [33, 160, 158, 133, 153, 144]
RIGHT_EYE = [263, 387, 385, 362, 380, 373]
LEFT_BROW_INNER, RIGHT_BROW_INNER = 66, 296
LEFT_BROW_CENTER, RIGHT_BROW_CENTER = 70, 300
NOSE_BRIDGE, NOSE_TIP = 168, 1
LEFT_CHEEK, RIGHT_CHEEK = 234, 454
CHIN = 152
UPPER_LIP_TOP, LOWER_LIP_BOTTOM = 13, 14
MOUTH_LEFT, MOUTH_RIGHT = 61, 291
LEFT_IRIS_CENTER, RIGHT_IRIS_CENTER = 468, 473
LEFT_NOSTRIL, RIGHT_NOSTRIL = 49, 279
LEFT_MOUTH_UPPER, LEFT_MOUTH_LOWER = 78, 95
RIGHT_MOUTH_UPPER, RIGHT_MOUTH_LOWER = 308, 324
FOREHEAD = 10
JAW_LEFT, JAW_RIGHT = 172, 397
LEFT_EYE_INNER, LEFT_EYE_OUTER = 133, 33
RIGHT_EYE_INNER, RIGHT_EYE_OUTER = 362, 263

# Relaxed-face reference ratios
NEUTRAL_EAR = 0.26
EYE_STRAIN_EAR = 0.20
NORMAL_BROW_DISTANCE = 0.18
NORMAL_BROW_HEIGHT = 0.09
NORMAL_JAW_RATIO = 1.05
NORMAL_LIP_RATIO = 0.14
NORMAL_FOREHEAD_RATIO = 0.28
NORMAL_NOSTRIL_RATIO = 0.20
NORMAL_UPPER_LIP_RATIO = 1.9
NORMAL_CHIN_RATIO = 6.0
NORMAL_FACE_ASPECT = 1.15
TREMOR_MIN, TREMOR_MAX = 0.002, 0.008
DEFAULT_EYE_DARTING = 10.0

# Order matters only for display; the stabilizer weights signals by key.
SIGNAL_KEYS: List[str] = [
    "brow_tension",
    "forehead_tension",
    "jaw_clench",
    "lip_press",
    "micro_expression_tension",
    "gaze_instability",
    "eye_darting",
    "nose_flare",
    "head_movement",
    "mouth_asymmetry",
    "eye_strain",
    "cheek_tension",
    "upper_lip_tension",
    "chin_tension",
    "micro_tremor",
]


@dataclass
class FrameAnchors:
    """Previous-frame reference points for motion signals."""
    nose_tip: Optional[np.ndarray] = None  # (x, y, z)
    gaze_vector: Optional[Tuple[float, float]] = None  # iris position within each eye (0-1)
    timestamp: float = 0.0  # seconds


@dataclass
class RawSignalSample:
    """Raw signals for one frame. All values finite and within 0-100."""
    face_detected: bool
    signals: Dict[str, float] = field(default_factory=dict)
    eye_aspect_ratio: float = NEUTRAL_EAR
    anchors: Optional[FrameAnchors] = None

    def get(self, key: str, default: float = 0.0) -> float:
        return float(self.signals.get(key, default))


def empty_sample() -> RawSignalSample:
    """Sample for a frame with no face: every signal 0, no anchors carried over."""
    return RawSignalSample(
        face_detected=False,
        signals={k: 0.0 for k in SIGNAL_KEYS},
        eye_aspect_ratio=NEUTRAL_EAR,
        anchors=None,
    )


def _clamp_signal(value: float) -> float:
    v = float(value)
    if not np.isfinite(v):
        return 0.0
    return float(max(0.0, min(100.0, v)))


def _power_curve(normalized: float, gamma: float) -> float:
    """pow(normalized, gamma) * 100 with normalized clipped to 0-1."""
    n = float(normalized)
    if not np.isfinite(n) or n <= 0.0:
        return 0.0
    return float(np.power(min(n, 1.0), gamma) * 100.0)


def _as_points(landmarks: np.ndarray) -> np.ndarray:
    lm = np.asarray(landmarks, dtype=np.float64)
    if lm.ndim != 2 or lm.shape[0] == 0:
        return np.zeros((0, 3))
    if lm.shape[1] == 2:
        lm = np.hstack([lm, np.zeros((lm.shape[0], 1))])
    return lm[:, :3]


def _pt(lm: np.ndarray, idx: int) -> Optional[np.ndarray]:
    if idx >= lm.shape[0]:
        return None
    p = lm[idx]
    if not np.all(np.isfinite(p)):
        return None
    return p


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def eye_aspect_ratio(lm: np.ndarray, indices: List[int]) -> float:
    """EAR = (|p2-p6| + |p3-p5|) / (2|p1-p4|), clamped to 0.12-0.45."""
    pts = [_pt(lm, i) for i in indices]
    if len(pts) != 6 or any(p is None for p in pts):
        return NEUTRAL_EAR
    p1, p2, p3, p4, p5, p6 = pts
    horizontal = _dist(p1, p4)
    if horizontal <= 0:
        return NEUTRAL_EAR
    ear = (_dist(p2, p6) + _dist(p3, p5)) / (2.0 * horizontal)
    return float(np.clip(ear, 0.12, 0.45))


def _brow_tension(lm: np.ndarray) -> float:
    li, ri = _pt(lm, LEFT_BROW_INNER), _pt(lm, RIGHT_BROW_INNER)
    lc, rc = _pt(lm, LEFT_BROW_CENTER), _pt(lm, RIGHT_BROW_CENTER)
    bridge = _pt(lm, NOSE_BRIDGE)
    if li is None or ri is None or lc is None or rc is None or bridge is None:
        return 0.0
    # Brows pulled together
    horizontal = max(0.0, (NORMAL_BROW_DISTANCE - _dist(li, ri)) / NORMAL_BROW_DISTANCE)
    # Brows raised or lowered relative to the nose bridge
    left_h = abs(lc[1] - bridge[1])
    right_h = abs(rc[1] - bridge[1])
    vertical = abs((left_h + right_h) / 2.0 - NORMAL_BROW_HEIGHT) / NORMAL_BROW_HEIGHT
    furrow = abs(left_h - right_h) * 3.0
    raw = horizontal * 0.6 + vertical * 0.25 + furrow * 0.15
    return _power_curve(raw, 0.7)


def _jaw_clench(lm: np.ndarray) -> float:
    jl, jr = _pt(lm, JAW_LEFT), _pt(lm, JAW_RIGHT)
    chin, nose = _pt(lm, CHIN), _pt(lm, NOSE_TIP)
    if jl is None or jr is None or chin is None or nose is None:
        return 0.0
    face_height = _dist(nose, chin)
    if face_height <= 0:
        return 0.0
    deviation = max(0.0, _dist(jl, jr) / face_height - NORMAL_JAW_RATIO)
    return _power_curve(deviation / 0.15, 0.75)


def _mouth_width(lm: np.ndarray) -> Optional[float]:
    ml, mr = _pt(lm, MOUTH_LEFT), _pt(lm, MOUTH_RIGHT)
    if ml is None or mr is None:
        return None
    return _dist(ml, mr)


def _lip_press(lm: np.ndarray) -> float:
    upper, lower = _pt(lm, UPPER_LIP_TOP), _pt(lm, LOWER_LIP_BOTTOM)
    width = _mouth_width(lm)
    if upper is None or lower is None or not width:
        return 0.0
    deviation = max(0.0, NORMAL_LIP_RATIO - _dist(upper, lower) / width)
    return _power_curve(deviation / 0.06, 0.8)


def _forehead_tension(lm: np.ndarray) -> float:
    forehead = _pt(lm, FOREHEAD)
    lb, rb = _pt(lm, LEFT_BROW_CENTER), _pt(lm, RIGHT_BROW_CENTER)
    bridge = _pt(lm, NOSE_BRIDGE)
    if forehead is None or lb is None or rb is None or bridge is None:
        return 0.0
    brow_gap = abs(forehead[1] - (lb[1] + rb[1]) / 2.0)
    depth = abs(forehead[1] - bridge[1]) or 1.0
    deviation = max(0.0, NORMAL_FOREHEAD_RATIO - brow_gap / depth)
    return _power_curve(deviation / 0.08, 0.8)


def _nose_flare(lm: np.ndarray) -> float:
    ln, rn = _pt(lm, LEFT_NOSTRIL), _pt(lm, RIGHT_NOSTRIL)
    width = _mouth_width(lm)
    if ln is None or rn is None or width is None:
        return 0.0
    deviation = max(0.0, _dist(ln, rn) / (width or 1.0) - NORMAL_NOSTRIL_RATIO)
    return _power_curve(deviation / 0.06, 0.85)


def _mouth_asymmetry(lm: np.ndarray) -> float:
    lu, ll = _pt(lm, LEFT_MOUTH_UPPER), _pt(lm, LEFT_MOUTH_LOWER)
    ru, rl = _pt(lm, RIGHT_MOUTH_UPPER), _pt(lm, RIGHT_MOUTH_LOWER)
    width = _mouth_width(lm)
    if lu is None or ll is None or ru is None or rl is None or width is None:
        return 0.0
    diff = abs(abs(lu[1] - ll[1]) - abs(ru[1] - rl[1]))
    return float(np.clip(diff / (width or 1.0) * 6.0, 0.0, 1.0) * 100.0)


def _eye_strain(avg_ear: float) -> float:
    if avg_ear >= NEUTRAL_EAR:
        return 0.0
    if avg_ear < EYE_STRAIN_EAR:
        return min(100.0, (EYE_STRAIN_EAR - avg_ear) / EYE_STRAIN_EAR * 100.0)
    # Mild narrowing caps at 50
    return min(50.0, (NEUTRAL_EAR - avg_ear) / (NEUTRAL_EAR - EYE_STRAIN_EAR) * 50.0)


def _cheek_tension(lm: np.ndarray) -> float:
    lc, rc = _pt(lm, LEFT_CHEEK), _pt(lm, RIGHT_CHEEK)
    nose, chin = _pt(lm, NOSE_TIP), _pt(lm, CHIN)
    if lc is None or rc is None or nose is None or chin is None:
        return 0.0
    face_height = abs(chin[1] - nose[1])
    if face_height <= 0:
        return 0.0
    expected_y = nose[1] + face_height * 0.55
    elevation = max(0.0, expected_y - (lc[1] + rc[1]) / 2.0)
    return min(100.0, elevation / (face_height * 0.15) * 100.0)


def _upper_lip_tension(lm: np.ndarray) -> float:
    lip, nose = _pt(lm, UPPER_LIP_TOP), _pt(lm, NOSE_TIP)
    ln, rn = _pt(lm, LEFT_NOSTRIL), _pt(lm, RIGHT_NOSTRIL)
    if lip is None or nose is None or ln is None or rn is None:
        return 0.0
    nostril_to_nose = abs((ln[1] + rn[1]) / 2.0 - nose[1])
    if nostril_to_nose == 0:
        return 0.0
    deviation = max(0.0, NORMAL_UPPER_LIP_RATIO - abs(lip[1] - nose[1]) / nostril_to_nose)
    return _power_curve(deviation / 0.4, 0.8)


def _chin_tension(lm: np.ndarray) -> float:
    chin, lower = _pt(lm, CHIN), _pt(lm, LOWER_LIP_BOTTOM)
    lml, rml = _pt(lm, LEFT_MOUTH_LOWER), _pt(lm, RIGHT_MOUTH_LOWER)
    if chin is None or lower is None or lml is None or rml is None:
        return 0.0
    mouth_to_lip = abs((lml[1] + rml[1]) / 2.0 - lower[1])
    if mouth_to_lip == 0:
        return 0.0
    vertical_ratio = abs(chin[1] - lower[1]) / mouth_to_lip
    tension = max(0.0, NORMAL_CHIN_RATIO - vertical_ratio) / 2.0
    return min(100.0, tension * 100.0)


def _micro_expression_tension(lm: np.ndarray, brow: float, lip: float, jaw: float) -> float:
    lc, rc = _pt(lm, LEFT_CHEEK), _pt(lm, RIGHT_CHEEK)
    nose, chin = _pt(lm, NOSE_TIP), _pt(lm, CHIN)
    fallback = brow * 0.4 + lip * 0.35 + jaw * 0.25
    if lc is None or rc is None or nose is None or chin is None:
        return fallback
    face_height = _dist(nose, chin)
    cheeks = _dist(lc, rc)
    if not np.isfinite(cheeks) or not np.isfinite(face_height) or face_height == 0:
        return fallback
    aspect_tension = min(100.0, abs(cheeks / face_height - NORMAL_FACE_ASPECT) / 0.25 * 100.0)
    # Lowered cheeks read as tension; raised (smiling) cheeks do not
    normal_cheek_y = nose[1] + (chin[1] - nose[1]) * 0.45
    cheek_drop = max(0.0, (lc[1] + rc[1]) / 2.0 - normal_cheek_y)
    lowered_cheek = min(100.0, cheek_drop / 0.03 * 100.0)
    return (
        brow * 0.30
        + lip * 0.25
        + jaw * 0.20
        + aspect_tension * 0.15
        + lowered_cheek * 0.10
    )


def _gaze_vector(lm: np.ndarray) -> Optional[Tuple[float, float]]:
    li, lo = _pt(lm, LEFT_EYE_INNER), _pt(lm, LEFT_EYE_OUTER)
    ri, ro = _pt(lm, RIGHT_EYE_INNER), _pt(lm, RIGHT_EYE_OUTER)
    liris, riris = _pt(lm, LEFT_IRIS_CENTER), _pt(lm, RIGHT_IRIS_CENTER)
    if li is None or lo is None or ri is None or ro is None or liris is None or riris is None:
        return None
    left_w = max(1e-4, _dist(li, lo))
    right_w = max(1e-4, _dist(ri, ro))
    left = float(np.clip((liris[0] - lo[0]) / left_w, 0.0, 1.0))
    right = float(np.clip((riris[0] - ro[0]) / right_w, 0.0, 1.0))
    return (left, right)


def _eye_darting(
    gaze: Optional[Tuple[float, float]],
    previous: Optional[FrameAnchors],
    timestamp: float,
) -> float:
    if gaze is None or previous is None or previous.gaze_vector is None:
        return DEFAULT_EYE_DARTING
    magnitude = (abs(gaze[0] - previous.gaze_vector[0]) + abs(gaze[1] - previous.gaze_vector[1])) / 2.0
    dt = max(0.016, timestamp - previous.timestamp)
    velocity = magnitude / dt
    return float(np.clip(velocity * 120.0, 5.0, 100.0))


def extract_signals(
    landmarks: Optional[np.ndarray],
    previous: Optional[FrameAnchors] = None,
    timestamp: float = 0.0,
) -> RawSignalSample:
    """
    Compute raw stress signals for one frame.

    Args:
        landmarks: (N, 2) or (N, 3) normalized points for one face, or None for no face.
        previous: Anchors returned on the previous frame's sample (None on the first frame
                  or after a detection gap).
        timestamp: Frame time in seconds.

    Returns:
        RawSignalSample. With no face, every signal is 0 and anchors are None.
    """
    if landmarks is None:
        return empty_sample()
    lm = _as_points(landmarks)
    nose = _pt(lm, NOSE_TIP)
    if lm.shape[0] == 0 or nose is None:
        return empty_sample()

    left_ear = eye_aspect_ratio(lm, LEFT_EYE)
    right_ear = eye_aspect_ratio(lm, RIGHT_EYE)
    avg_ear = (left_ear + right_ear) / 2.0

    brow = _brow_tension(lm)
    jaw = _jaw_clench(lm)
    lip = _lip_press(lm)

    prev_nose = previous.nose_tip if previous is not None else None
    if prev_nose is None:
        micro_tremor = 0.0
        head_movement = 5.0
        gaze_instability = 0.0
    else:
        movement = _dist(prev_nose, nose)
        if movement < TREMOR_MIN:
            micro_tremor = 0.0
        else:
            micro_tremor = min(100.0, (movement - TREMOR_MIN) / (TREMOR_MAX - TREMOR_MIN) * 100.0)
        head_movement = min(1.0, movement * 18.0) * 100.0
        gaze_instability = min(100.0, movement * 10.0) * 100.0

    gaze = _gaze_vector(lm)
    eye_darting = _eye_darting(gaze, previous, timestamp)

    raw = {
        "brow_tension": brow,
        "forehead_tension": _forehead_tension(lm),
        "jaw_clench": jaw,
        "lip_press": lip,
        "micro_expression_tension": _micro_expression_tension(lm, brow, lip, jaw),
        "gaze_instability": gaze_instability,
        "eye_darting": eye_darting,
        "nose_flare": _nose_flare(lm),
        "head_movement": head_movement,
        "mouth_asymmetry": _mouth_asymmetry(lm),
        "eye_strain": _eye_strain(avg_ear),
        "cheek_tension": _cheek_tension(lm),
        "upper_lip_tension": _upper_lip_tension(lm),
        "chin_tension": _chin_tension(lm),
        "micro_tremor": micro_tremor,
    }
    signals = {k: _clamp_signal(v) for k, v in raw.items()}

    return RawSignalSample(
        face_detected=True,
        signals=signals,
        eye_aspect_ratio=float(avg_ear),
        anchors=FrameAnchors(nose_tip=nose.copy(), gaze_vector=gaze, timestamp=float(timestamp)),
    )
