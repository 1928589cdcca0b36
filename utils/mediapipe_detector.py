"""
MediaPipe FaceMesh landmark detector.

Runs FaceMesh with iris refinement (478 landmarks) on BGR frames:
1. Tracking mode first (fast once the face is acquired)
2. Static mode when tracking loses the face (slower, better at re-acquiring)

After several consecutive misses the tracking mesh is rebuilt so a stale track
does not keep failing.
"""

import logging
from typing import List

import cv2
import mediapipe as mp
import numpy as np

from utils.face_detection_interface import FaceDetectionResult, FaceDetectorInterface

logger = logging.getLogger(__name__)

RESET_AFTER_MISSES = 5


class MediaPipeFaceDetector(FaceDetectorInterface):
    """FaceMesh-backed detector returning normalized landmarks for a single face."""

    def __init__(self, min_detection_confidence: float = 0.3, min_tracking_confidence: float = 0.3):
        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._track_conf = max(0.01, min(0.99, float(min_tracking_confidence)))
        self._mp_face_mesh = mp.solutions.face_mesh
        self._tracking_mesh = self._new_mesh(static=False)
        self._static_mesh = None  # created on first tracking miss
        self._misses = 0

    def _new_mesh(self, static: bool):
        return self._mp_face_mesh.FaceMesh(
            static_image_mode=static,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=self._det_conf,
            min_tracking_confidence=self._track_conf,
        )

    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        if image is None or image.size == 0:
            return []
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        height, width = image.shape[:2]

        results = self._tracking_mesh.process(rgb)
        if results.multi_face_landmarks:
            self._misses = 0
            return self._to_results(results, width, height)

        if self._static_mesh is None:
            self._static_mesh = self._new_mesh(static=True)
        results = self._static_mesh.process(rgb)
        if results.multi_face_landmarks:
            self._misses = 0
            return self._to_results(results, width, height)

        self._misses += 1
        if self._misses >= RESET_AFTER_MISSES:
            self._tracking_mesh.close()
            self._tracking_mesh = self._new_mesh(static=False)
            self._misses = 0
        return []

    @staticmethod
    def _to_results(results, width: int, height: int) -> List[FaceDetectionResult]:
        faces = []
        for face in results.multi_face_landmarks:
            pts = np.array([[lm.x, lm.y, lm.z] for lm in face.landmark], dtype=np.float64)
            faces.append(FaceDetectionResult(landmarks=pts, image_size=(width, height)))
        return faces

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        for mesh in (self._tracking_mesh, self._static_mesh):
            if mesh is None:
                continue
            try:
                mesh.close()
            except (RuntimeError, ValueError) as e:
                logger.warning("FaceMesh close failed: %s", e)
        self._static_mesh = None
