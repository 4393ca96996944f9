"""
Synthetic detection and frame generators for behavior-signal tests.

Builds MediaPipe-shaped face results (478 normalized landmarks plus named
blendshapes) and pose results (33 landmarks), and ready-made FrameSample
sequences with known eye contact, blinks, head motion and lean. Used to test
the extractor, aggregator, combiner and tracker without a camera.

Coordinates are normalized (0-1). Pose indices: 11/12 shoulders, 23/24 hips.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

GAZE_KEYS = (
    "eyeLookInLeft", "eyeLookOutLeft", "eyeLookUpLeft", "eyeLookDownLeft",
    "eyeLookInRight", "eyeLookOutRight", "eyeLookUpRight", "eyeLookDownRight",
)
FACE_LANDMARK_COUNT = 478
POSE_LANDMARK_COUNT = 33
# Seated candidate framed from the chest up: shoulders at 0.55, hips 0.40 lower.
UPRIGHT_SHOULDER_Y = 0.55
UPRIGHT_TORSO = 0.40


def make_blendshapes(gaze: float = 0.0, blink: float = 0.0) -> Dict[str, float]:
    """Blendshapes with every gaze coefficient at `gaze` and both blink coefficients at `blink`."""
    shapes = {k: float(gaze) for k in GAZE_KEYS}
    shapes["eyeBlinkLeft"] = float(blink)
    shapes["eyeBlinkRight"] = float(blink)
    return shapes


def make_face_landmarks(nose=(0.5, 0.45)) -> np.ndarray:
    """478x3 landmarks on a small grid around the face centre, nose tip (index 1) at `nose`."""
    lm = np.zeros((FACE_LANDMARK_COUNT, 3), dtype=np.float64)
    angles = np.linspace(0, 2 * np.pi, FACE_LANDMARK_COUNT, endpoint=False)
    lm[:, 0] = nose[0] + 0.1 * np.cos(angles)
    lm[:, 1] = nose[1] + 0.12 * np.sin(angles)
    lm[1, 0], lm[1, 1] = nose
    return lm


def make_pose_landmarks(shoulder_y: float = UPRIGHT_SHOULDER_Y, hip_y: float = UPRIGHT_SHOULDER_Y + UPRIGHT_TORSO) -> np.ndarray:
    """33x3 pose landmarks with both shoulders at shoulder_y and both hips at hip_y."""
    lm = np.full((POSE_LANDMARK_COUNT, 3), 0.5, dtype=np.float64)
    lm[11] = [0.40, shoulder_y, 0.0]
    lm[12] = [0.60, shoulder_y, 0.0]
    lm[23] = [0.42, hip_y, 0.0]
    lm[24] = [0.58, hip_y, 0.0]
    return lm


def make_face_dict(gaze: float = 0.0, blink: float = 0.0, nose=(0.5, 0.45), confidence: float = 1.0) -> dict:
    """Face payload as a browser detector would post it."""
    return {
        "landmarks": make_face_landmarks(nose).tolist(),
        "blendshapes": make_blendshapes(gaze, blink),
        "confidence": confidence,
    }


def make_pose_dict(lean: float = 0.0, confidence: float = 1.0) -> dict:
    """Seated-torso pose payload whose hip-minus-shoulder offset is UPRIGHT_TORSO + lean."""
    hip_y = UPRIGHT_SHOULDER_Y + UPRIGHT_TORSO + lean
    return {"landmarks": make_pose_landmarks(UPRIGHT_SHOULDER_Y, hip_y).tolist(), "confidence": confidence}


def make_samples(
    n: int,
    eye_contact: float = 0.9,
    blinks: Optional[Sequence[bool]] = None,
    lean: float = 0.0,
    heads: Optional[Sequence[Sequence[float]]] = None,
    interval_ms: float = 100.0,
    start_ms: float = 1000.0,
    face_detected: bool = True,
) -> List:
    """
    FrameSample sequence with constant eye contact and lean.

    blinks and heads, when given, must have length n.
    """
    from utils.frame_features import FrameSample

    samples = []
    for i in range(n):
        hx, hy = heads[i] if heads is not None else (0.5, 0.5)
        samples.append(FrameSample(
            timestamp_ms=start_ms + i * interval_ms,
            eye_contact=eye_contact,
            blink_event=bool(blinks[i]) if blinks is not None else False,
            head_x=hx,
            head_y=hy,
            lean=lean,
            face_detected=face_detected,
        ))
    return samples


def jitter_heads(n: int, amplitude: float, seed: int = 3) -> List[tuple]:
    """n head points jittered uniformly by +/- amplitude around the centre."""
    rng = np.random.default_rng(seed)
    offsets = rng.uniform(-amplitude, amplitude, size=(n, 2))
    return [(0.5 + dx, 0.5 + dy) for dx, dy in offsets]


def make_jpeg(width: int = 64, height: int = 48) -> bytes:
    """A small grey JPEG frame."""
    import cv2
    ok, buf = cv2.imencode(".jpg", np.full((height, width, 3), 128, dtype=np.uint8))
    assert ok
    return buf.tobytes()


def make_fake_detector(available: bool = True, gaze: float = 0.0, lean: float = 0.0):
    """
    FrameDetectorInterface stand-in returning fixed detections.

    Records the shape of every image passed to detect() in .calls.
    """
    from utils.face_detection_interface import (
        FaceDetectionResult,
        FrameDetectorInterface,
        PoseDetectionResult,
    )

    class FakeFrameDetector(FrameDetectorInterface):
        def __init__(self):
            self.calls = []

        def detect(self, image):
            self.calls.append(image.shape)
            face = FaceDetectionResult.from_dict(make_face_dict(gaze=gaze))
            pose = PoseDetectionResult.from_dict(make_pose_dict(lean=lean))
            return face, pose

        def is_available(self):
            return available

        def get_name(self):
            return "fake"

    return FakeFrameDetector()
