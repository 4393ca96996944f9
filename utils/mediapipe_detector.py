"""
MediaPipe Face/Pose Detection Implementation

This module provides a MediaPipe Tasks implementation of FrameDetectorInterface:
1. FaceLandmarker with blendshapes (gaze and blink coefficients, 478 landmarks)
2. PoseLandmarker (33 body landmarks; shoulders and hips drive lean)

Both landmarkers are created on first use so importing this module stays cheap.
"""

import logging
import os
from typing import Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks import python as mp_python
from mediapipe.tasks.python import vision

import config
from utils.face_detection_interface import FrameDetectorInterface, FaceDetectionResult, PoseDetectionResult

logger = logging.getLogger(__name__)

# Pose landmarks whose visibility decides pose confidence (shoulders, hips).
_TORSO_INDICES = (11, 12, 23, 24)


class MediaPipeFrameDetector(FrameDetectorInterface):
    """
    MediaPipe-based face + pose detector for single still frames.

    Runs in IMAGE mode: frames arrive as independent uploads, so there is no
    video timestamp stream to track against.
    """

    def __init__(
        self,
        face_model_path: Optional[str] = None,
        pose_model_path: Optional[str] = None,
        min_detection_confidence: Optional[float] = None,
    ):
        """
        Args:
            face_model_path: Path to face_landmarker.task (default from config)
            pose_model_path: Path to pose_landmarker*.task (default from config)
            min_detection_confidence: Detection floor (0-1) for both landmarkers
        """
        self.face_model_path = face_model_path or config.FACE_LANDMARKER_MODEL_PATH
        self.pose_model_path = pose_model_path or config.POSE_LANDMARKER_MODEL_PATH
        conf = config.MIN_DETECTION_CONFIDENCE if min_detection_confidence is None else min_detection_confidence
        self._det_conf = max(0.01, min(0.99, float(conf)))
        self._face_landmarker = None
        self._pose_landmarker = None

    def _get_face_landmarker(self):
        """Lazy init: create the FaceLandmarker on the first frame."""
        if self._face_landmarker is None:
            options = vision.FaceLandmarkerOptions(
                base_options=mp_python.BaseOptions(model_asset_path=self.face_model_path),
                running_mode=vision.RunningMode.IMAGE,
                num_faces=1,
                min_face_detection_confidence=self._det_conf,
                output_face_blendshapes=True,
            )
            self._face_landmarker = vision.FaceLandmarker.create_from_options(options)
        return self._face_landmarker

    def _get_pose_landmarker(self):
        """Lazy init: create the PoseLandmarker on the first frame."""
        if self._pose_landmarker is None:
            options = vision.PoseLandmarkerOptions(
                base_options=mp_python.BaseOptions(model_asset_path=self.pose_model_path),
                running_mode=vision.RunningMode.IMAGE,
                num_poses=1,
                min_pose_detection_confidence=self._det_conf,
            )
            self._pose_landmarker = vision.PoseLandmarker.create_from_options(options)
        return self._pose_landmarker

    def detect(self, image: np.ndarray) -> Tuple[Optional[FaceDetectionResult], Optional[PoseDetectionResult]]:
        """
        Detect face and pose in one BGR frame.

        Args:
            image: BGR image array

        Returns:
            (face, pose); (None, None) for an empty frame
        """
        if image is None or image.size == 0:
            return None, None

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        face = None
        try:
            face_result = self._get_face_landmarker().detect(mp_image)
            if face_result.face_landmarks:
                points = face_result.face_landmarks[0]
                blendshapes = {}
                if face_result.face_blendshapes:
                    blendshapes = {c.category_name: float(c.score) for c in face_result.face_blendshapes[0]}
                face = FaceDetectionResult(
                    landmarks=np.array([[p.x, p.y, p.z] for p in points], dtype=np.float64),
                    blendshapes=blendshapes,
                    confidence=1.0,  # FaceLandmarker reports no per-face score
                )
        except (RuntimeError, ValueError) as e:
            logger.warning("Face landmarker failed: %s", e)

        pose = None
        try:
            pose_result = self._get_pose_landmarker().detect(mp_image)
            if pose_result.pose_landmarks:
                points = pose_result.pose_landmarks[0]
                visibility = [
                    float(getattr(points[i], "visibility", 1.0) or 0.0)
                    for i in _TORSO_INDICES if i < len(points)
                ]
                pose = PoseDetectionResult(
                    landmarks=np.array([[p.x, p.y, p.z] for p in points], dtype=np.float64),
                    confidence=float(np.mean(visibility)) if visibility else 0.0,
                )
        except (RuntimeError, ValueError) as e:
            logger.warning("Pose landmarker failed: %s", e)

        return face, pose

    def is_available(self) -> bool:
        """Available when both model bundles exist on disk."""
        return os.path.isfile(self.face_model_path) and os.path.isfile(self.pose_model_path)

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        """Clean up MediaPipe resources."""
        for attr in ("_face_landmarker", "_pose_landmarker"):
            landmarker = getattr(self, attr)
            if landmarker is not None:
                try:
                    landmarker.close()
                except RuntimeError as e:
                    logger.warning("Failed to close %s: %s", attr, e)
                setattr(self, attr, None)


# Lazy singleton: model bundles are loaded only when a server-side frame arrives
_frame_detector: Optional[MediaPipeFrameDetector] = None


def get_frame_detector() -> MediaPipeFrameDetector:
    """Return the shared MediaPipe detector, creating it on first call (lazy init)."""
    global _frame_detector
    if _frame_detector is None:
        _frame_detector = MediaPipeFrameDetector()
    return _frame_detector
