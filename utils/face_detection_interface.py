"""
Face Landmark Detector Interface

The stress pipeline only needs one thing from a camera frame: the normalized
landmark array of the trader's face. This interface hides which backend produces
it so the session can be driven by MediaPipe in production and by a fake in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class FaceDetectionResult:
    """
    One detected face.

    Landmarks are normalized to the frame (x, y in 0-1; z relative depth on the
    x scale), 468 points or 478 with iris refinement.
    """
    landmarks: np.ndarray  # (N, 3) normalized
    image_size: Tuple[int, int] = (0, 0)  # (width, height) of the source frame
    confidence: float = 1.0  # detection confidence (0-1)


class FaceDetectorInterface(ABC):
    """Abstract landmark detector."""

    @abstractmethod
    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """
        Detect faces in a frame.

        Args:
            image: BGR image array (OpenCV format)

        Returns:
            One FaceDetectionResult per face (empty when none)
        """

    @abstractmethod
    def get_name(self) -> str:
        """Backend name, e.g. "mediapipe"."""

    def detect_primary(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Landmarks of the most confident face, or None when no face is found."""
        faces = self.detect_faces(image)
        if not faces:
            return None
        return max(faces, key=lambda f: f.confidence).landmarks

    def close(self) -> None:
        """Release backend resources. Default does nothing."""
