"""
Signal Aggregator

Reduces an ordered sequence of FrameSamples (a rolling window or the whole
session) into one immutable SignalSummary:

  eye_contact_pct     percentage of frames whose eye-contact scalar exceeds
                      EYE_CONTACT_THRESHOLD (frame fraction, not mean intensity)
  blink_rate_per_min  debounced blink onsets per minute
  head_stability      population variance of the 2-D head point (lower = steadier)
  posture             mean lean against +/- POSTURE_LEAN_THRESHOLD
  fidget_score        mean frame-to-frame head displacement
  duration_sec        wall-clock span of the samples

An empty sequence has no summary: aggregate() returns None.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

import config
from utils.frame_features import FrameSample


class Posture(Enum):
    """Posture classification from mean lean."""
    FORWARD = "forward"
    NEUTRAL = "neutral"
    BACK = "back"


@dataclass(frozen=True)
class SignalSummary:
    """One aggregation pass. Immutable once built."""
    eye_contact_pct: float
    blink_rate_per_min: float
    head_stability: float
    posture: Posture
    fidget_score: float
    duration_sec: float
    sample_count: int = 0
    blink_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eyeContactPct": round(self.eye_contact_pct, 2),
            "blinkRatePerMin": round(self.blink_rate_per_min, 2),
            "headStability": self.head_stability,
            "posture": self.posture.value,
            "fidgetScore": self.fidget_score,
            "durationSec": round(self.duration_sec, 3),
            "sampleCount": self.sample_count,
            "blinkCount": self.blink_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalSummary":
        return cls(
            eye_contact_pct=float(data.get("eyeContactPct", 0.0)),
            blink_rate_per_min=float(data.get("blinkRatePerMin", 0.0)),
            head_stability=float(data.get("headStability", 0.0)),
            posture=Posture(data.get("posture", Posture.NEUTRAL.value)),
            fidget_score=float(data.get("fidgetScore", 0.0)),
            duration_sec=float(data.get("durationSec", 0.0)),
            sample_count=int(data.get("sampleCount", 0)),
            blink_count=int(data.get("blinkCount", 0)),
        )


def _finite_mean(values: Sequence[float], default: float = 0.0) -> float:
    arr = np.asarray(values, dtype=np.float64)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return default
    return float(np.mean(arr))


def count_blinks(flags: Sequence[bool], debounce_frames: int) -> int:
    """
    Count blink onsets.

    A blink counts on a rising edge (blink frame after a non-blink frame, or the
    first frame). The next debounce_frames frames after a counted blink are
    ignored, and a run of consecutive blink frames is one blink.
    """
    count = 0
    cooldown = 0
    previous = False
    for flag in flags:
        if cooldown > 0:
            cooldown -= 1
        elif flag and not previous:
            count += 1
            cooldown = debounce_frames
        previous = bool(flag)
    return count


def classify_posture(mean_lean: float, threshold: float) -> Posture:
    if mean_lean < -threshold:
        return Posture.FORWARD
    if mean_lean > threshold:
        return Posture.BACK
    return Posture.NEUTRAL


class SignalAggregator:
    """
    Window aggregation over FrameSamples.

    Thresholds default to config; pass overrides in tests.
    """

    def __init__(
        self,
        eye_contact_threshold: Optional[float] = None,
        blink_debounce_frames: Optional[int] = None,
        posture_threshold: Optional[float] = None,
    ):
        self.eye_contact_threshold = (
            config.EYE_CONTACT_THRESHOLD if eye_contact_threshold is None else float(eye_contact_threshold)
        )
        self.blink_debounce_frames = (
            config.BLINK_DEBOUNCE_FRAMES if blink_debounce_frames is None else int(blink_debounce_frames)
        )
        self.posture_threshold = (
            config.POSTURE_LEAN_THRESHOLD if posture_threshold is None else float(posture_threshold)
        )

    def aggregate(self, samples: Sequence[FrameSample]) -> Optional[SignalSummary]:
        """
        Aggregate an ordered sequence of samples.

        Args:
            samples: FrameSamples in capture order

        Returns:
            SignalSummary, or None when samples is empty
        """
        if not samples:
            return None
        samples = list(samples)

        first_ts = samples[0].timestamp_ms
        last_ts = samples[-1].timestamp_ms
        duration_sec = (last_ts - first_ts) / 1000.0
        if not math.isfinite(duration_sec) or duration_sec < 0:
            duration_sec = 0.0

        eye_values = [s.eye_contact for s in samples if math.isfinite(s.eye_contact)]
        if eye_values:
            looking = sum(1 for v in eye_values if v > self.eye_contact_threshold)
            eye_contact_pct = 100.0 * looking / len(eye_values)
        else:
            eye_contact_pct = 0.0

        blink_count = count_blinks([s.blink_event for s in samples], self.blink_debounce_frames)
        blink_rate = blink_count / duration_sec * 60.0 if duration_sec > 0 else 0.0

        # Fallback centre points for frames with no face would fake motion.
        tracked = [s for s in samples if s.face_detected] or samples
        head_stability, fidget = self._head_metrics(tracked)

        posture = classify_posture(_finite_mean([s.lean for s in samples]), self.posture_threshold)

        return SignalSummary(
            eye_contact_pct=float(np.clip(eye_contact_pct, 0.0, 100.0)),
            blink_rate_per_min=max(0.0, blink_rate),
            head_stability=head_stability,
            posture=posture,
            fidget_score=fidget,
            duration_sec=duration_sec,
            sample_count=len(samples),
            blink_count=blink_count,
        )

    @staticmethod
    def _head_metrics(samples: List[FrameSample]):
        """(population 2-D variance, mean consecutive displacement) of the head point."""
        points = np.array([[s.head_x, s.head_y] for s in samples], dtype=np.float64)
        points = points[np.all(np.isfinite(points), axis=1)]
        if len(points) == 0:
            return 0.0, 0.0
        centre = points.mean(axis=0)
        variance = float(np.mean(np.sum((points - centre) ** 2, axis=1)))
        if len(points) < 2:
            return variance, 0.0
        steps = np.linalg.norm(np.diff(points, axis=0), axis=1)
        return variance, float(np.mean(steps))
