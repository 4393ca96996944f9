"""
Face/Pose Detection Interface Module

This module defines the normalized detection results consumed by the frame
feature extractor and an abstract interface for detectors, so the capture
pipeline works the same with server-side MediaPipe or with landmarks posted
by a browser-side detector.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np


def _as_landmark_array(raw: Any) -> np.ndarray:
    """Coerce [[x, y(, z)], ...] or [{"x":..,"y":..}, ...] into an (N, 2+) float array."""
    if raw is None:
        return np.zeros((0, 2), dtype=np.float64)
    if isinstance(raw, np.ndarray):
        return raw.astype(np.float64, copy=False)
    rows = []
    for p in raw:
        if isinstance(p, dict):
            rows.append([float(p.get("x", 0.0)), float(p.get("y", 0.0)), float(p.get("z", 0.0))])
        else:
            vals = [float(v) for v in list(p)[:3]]
            while len(vals) < 3:
                vals.append(0.0)
            rows.append(vals)
    if not rows:
        return np.zeros((0, 2), dtype=np.float64)
    return np.array(rows, dtype=np.float64)


@dataclass
class FaceDetectionResult:
    """
    Standardized face detection result.

    Landmarks are normalized image coordinates (x, y in [0, 1]); blendshapes
    are the face model's named 0-1 coefficients (eyeBlinkLeft, eyeLookOutRight, ...).
    """
    landmarks: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    blendshapes: Dict[str, float] = field(default_factory=dict)
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["FaceDetectionResult"]:
        """Build from a JSON payload; None or an empty payload means no face."""
        if not data:
            return None
        blend = data.get("blendshapes") or {}
        if isinstance(blend, list):
            # MediaPipe JS shape: [{"categoryName": ..., "score": ...}, ...]
            blend = {
                str(b.get("categoryName") or b.get("name")): float(b.get("score", 0.0))
                for b in blend if isinstance(b, dict)
            }
        return cls(
            landmarks=_as_landmark_array(data.get("landmarks")),
            blendshapes={str(k): float(v) for k, v in blend.items()},
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass
class PoseDetectionResult:
    """Standardized pose detection result (33 normalized body landmarks)."""
    landmarks: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PoseDetectionResult"]:
        if not data:
            return None
        return cls(
            landmarks=_as_landmark_array(data.get("landmarks")),
            confidence=float(data.get("confidence", 1.0)),
        )


class FrameDetectorInterface(ABC):
    """
    Abstract interface for per-frame face + pose detection.

    Implementations return (None, None) for frames with nothing detected;
    they must not raise for a bad frame.
    """

    @abstractmethod
    def detect(self, image: np.ndarray) -> Tuple[Optional[FaceDetectionResult], Optional[PoseDetectionResult]]:
        """
        Detect the face and body pose in an image.

        Args:
            image: BGR image array (OpenCV format)

        Returns:
            (face, pose); either may be None
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True if the detector can be used (models present, library loaded)."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def close(self) -> None:
        """Clean up resources. Override if needed."""
        pass
