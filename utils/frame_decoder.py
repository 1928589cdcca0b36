"""
Decode uploaded camera frames (JPEG/PNG bytes) into BGR arrays for the detector.
Frames wider than FRAME_MAX_WIDTH are downscaled; landmarks are normalized, so
scaling does not change the signals, only the detection cost.
"""

from typing import Optional

import cv2
import numpy as np

import config


def decode_frame(image_bytes: bytes, max_width: Optional[int] = None) -> Optional[np.ndarray]:
    """Return a BGR frame, or None when the bytes are empty or not a decodable image."""
    if not image_bytes:
        return None
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if frame is None:
        return None
    limit = int(max_width if max_width is not None else config.FRAME_MAX_WIDTH)
    h, w = frame.shape[:2]
    if limit > 0 and w > limit:
        scale = limit / w
        frame = cv2.resize(frame, (limit, int(round(h * scale))), interpolation=cv2.INTER_AREA)
    return frame
