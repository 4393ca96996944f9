"""
Frame Feature Extractor

Turns one frame's face/pose detection into a compact FrameSample:
eye-contact scalar, blink event, head reference point and lean.

Detection loss is normal on a webcam (candidate looks down, leaves the frame,
bad light), so extraction never raises: missing or low-confidence detections
fall back to neutral values and the sample records which inputs were present.

Lean is measured against a neutral offset. Without a configured offset each
extractor learns one from the first pose frames it sees, so an extractor
belongs to a single session.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import numpy as np

import config
from utils.face_detection_interface import FaceDetectionResult, PoseDetectionResult

# Four gaze directions x two eyes, as named by the MediaPipe face blendshape model.
GAZE_BLENDSHAPES = (
    "eyeLookInLeft", "eyeLookOutLeft", "eyeLookUpLeft", "eyeLookDownLeft",
    "eyeLookInRight", "eyeLookOutRight", "eyeLookUpRight", "eyeLookDownRight",
)
BLINK_BLENDSHAPES = ("eyeBlinkLeft", "eyeBlinkRight")

# MediaPipe pose indices
LEFT_SHOULDER, RIGHT_SHOULDER = 11, 12
LEFT_HIP, RIGHT_HIP = 23, 24

NEUTRAL_EYE_CONTACT = 0.5
NEUTRAL_HEAD = (0.5, 0.5)


@dataclass(frozen=True)
class FrameSample:
    """Features of one processed frame. Ephemeral; never persisted individually."""
    timestamp_ms: float
    eye_contact: float  # 0-1, higher = more direct gaze
    blink_event: bool
    head_x: float  # 0-1, nose-tip reference point
    head_y: float
    lean: float  # negative = leaning forward, positive = leaning back
    face_detected: bool = True
    pose_detected: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestampMs": self.timestamp_ms,
            "eyeContact": round(self.eye_contact, 4),
            "blinkEvent": self.blink_event,
            "headX": round(self.head_x, 4),
            "headY": round(self.head_y, 4),
            "lean": round(self.lean, 4),
            "faceDetected": self.face_detected,
            "poseDetected": self.pose_detected,
        }


FaceInput = Union[FaceDetectionResult, Dict[str, Any], None]
PoseInput = Union[PoseDetectionResult, Dict[str, Any], None]


def _finite(value: Any, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


class FrameFeatureExtractor:
    """
    Per-frame feature extraction.

    Usage:
        extractor = FrameFeatureExtractor()
        sample = extractor.extract(face, pose, timestamp_ms)
    """

    def __init__(
        self,
        eye_contact_scale: Optional[float] = None,
        blink_threshold: Optional[float] = None,
        min_confidence: Optional[float] = None,
        nose_tip_index: Optional[int] = None,
        lean_neutral_offset: Optional[float] = None,
        calibration_frames: Optional[int] = None,
    ):
        """
        Args:
            lean_neutral_offset: Fixed raw lean treated as upright; None uses
                config.LEAN_NEUTRAL_OFFSET, and when that is unset too the offset
                is the mean raw lean of the first calibration_frames pose frames
            calibration_frames: Pose frames used to learn the neutral offset
        """
        self.eye_contact_scale = config.EYE_CONTACT_SCALE if eye_contact_scale is None else float(eye_contact_scale)
        self.blink_threshold = config.BLINK_SUM_THRESHOLD if blink_threshold is None else float(blink_threshold)
        self.min_confidence = config.MIN_DETECTION_CONFIDENCE if min_confidence is None else float(min_confidence)
        self.nose_tip_index = config.NOSE_TIP_INDEX if nose_tip_index is None else int(nose_tip_index)
        if lean_neutral_offset is None:
            lean_neutral_offset = config.LEAN_NEUTRAL_OFFSET
        self.lean_neutral_offset = None if lean_neutral_offset is None else float(lean_neutral_offset)
        self.calibration_frames = max(1, int(
            config.LEAN_CALIBRATION_FRAMES if calibration_frames is None else calibration_frames
        ))
        self._baseline: List[float] = []
        self._baseline_lock = threading.Lock()

    @property
    def neutral_offset(self) -> Optional[float]:
        """Raw lean currently treated as upright; None before any pose frame when calibrating."""
        if self.lean_neutral_offset is not None:
            return self.lean_neutral_offset
        with self._baseline_lock:
            return float(np.mean(self._baseline)) if self._baseline else None

    def reset_calibration(self) -> None:
        with self._baseline_lock:
            self._baseline.clear()

    def extract(
        self,
        face: FaceInput,
        pose: PoseInput,
        timestamp_ms: Optional[float] = None,
    ) -> FrameSample:
        """
        Build a FrameSample from one frame's detections.

        Args:
            face: FaceDetectionResult, equivalent dict, or None
            pose: PoseDetectionResult, equivalent dict, or None
            timestamp_ms: Capture time; defaults to now

        Returns:
            FrameSample (never raises)
        """
        if timestamp_ms is None:
            timestamp_ms = time.time() * 1000.0
        face = self._usable_face(face)
        pose = self._usable_pose(pose)

        eye_contact = NEUTRAL_EYE_CONTACT
        blink = False
        head_x, head_y = NEUTRAL_HEAD
        head_found = False
        if face is not None:
            eye_contact = self._eye_contact(face.blendshapes)
            blink = self._blink(face.blendshapes)
            head = self._head_point(face.landmarks)
            if head is not None:
                head_x, head_y = head
                head_found = True

        lean = None
        if pose is not None:
            lean = self._lean(pose.landmarks)

        return FrameSample(
            timestamp_ms=_finite(timestamp_ms, 0.0),
            eye_contact=eye_contact,
            blink_event=blink,
            head_x=head_x,
            head_y=head_y,
            lean=0.0 if lean is None else lean,
            face_detected=head_found,
            pose_detected=lean is not None,
        )

    def _usable_face(self, face: FaceInput) -> Optional[FaceDetectionResult]:
        if isinstance(face, dict):
            face = FaceDetectionResult.from_dict(face)
        if face is None or _finite(face.confidence, 0.0) < self.min_confidence:
            return None
        return face

    def _usable_pose(self, pose: PoseInput) -> Optional[PoseDetectionResult]:
        if isinstance(pose, dict):
            pose = PoseDetectionResult.from_dict(pose)
        if pose is None or _finite(pose.confidence, 0.0) < self.min_confidence:
            return None
        return pose

    def _eye_contact(self, blendshapes: Dict[str, float]) -> float:
        """Invert mean gaze deviation; a face without gaze coefficients reads as neutral."""
        values = [_finite(blendshapes[k], 0.0) for k in GAZE_BLENDSHAPES if k in blendshapes]
        if not values:
            return NEUTRAL_EYE_CONTACT
        deviation = float(np.mean(values))
        return float(np.clip(1.0 - deviation * self.eye_contact_scale, 0.0, 1.0))

    def _blink(self, blendshapes: Dict[str, float]) -> bool:
        total = sum(_finite(blendshapes.get(k, 0.0), 0.0) for k in BLINK_BLENDSHAPES)
        return total > self.blink_threshold

    def _head_point(self, landmarks: np.ndarray):
        if landmarks is None or len(landmarks) <= self.nose_tip_index:
            return None
        x = _finite(landmarks[self.nose_tip_index][0], float("nan"))
        y = _finite(landmarks[self.nose_tip_index][1], float("nan"))
        if math.isnan(x) or math.isnan(y):
            return None
        return x, y

    def _lean(self, landmarks: np.ndarray) -> Optional[float]:
        """
        Hip midpoint y minus shoulder midpoint y, less the neutral offset.

        Returns None when any of the four torso landmarks is missing.
        """
        if landmarks is None or len(landmarks) <= max(RIGHT_HIP, LEFT_HIP):
            return None
        ys = [_finite(landmarks[i][1], float("nan")) for i in (LEFT_SHOULDER, RIGHT_SHOULDER, LEFT_HIP, RIGHT_HIP)]
        if any(math.isnan(v) for v in ys):
            return None
        shoulder_mid = (ys[0] + ys[1]) / 2.0
        hip_mid = (ys[2] + ys[3]) / 2.0
        raw = hip_mid - shoulder_mid
        return raw - self._neutral_for(raw)

    def _neutral_for(self, raw: float) -> float:
        if self.lean_neutral_offset is not None:
            return self.lean_neutral_offset
        with self._baseline_lock:
            if len(self._baseline) < self.calibration_frames:
                self._baseline.append(raw)
            return float(np.mean(self._baseline))
