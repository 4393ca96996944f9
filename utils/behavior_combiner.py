"""
Behavior Score Combiner

Fuses an impression classification (one label + distribution from an external
image classifier) with the latest SignalSummary into four 0-100 scores:
professionalism, engagement, alertness and confidence.

Order of a fusion pass:
  1. start from baseline scores
  2. top-class adjustment (offset + slope * confidence)
  3. secondary classes above SECONDARY_CLASS_THRESHOLD nudge their dimension
  4. signal adjustments (eye contact, head stability, posture, blink rate)
  5. clamp each score to [0, 100]

Intermediate values may overshoot; only the final clamp bounds them.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from utils.signal_aggregator import Posture, SignalSummary

SCORE_KEYS = ("professionalism", "engagement", "alertness", "confidence")

BASELINE_SCORES: Dict[str, float] = {
    "professionalism": 75.0,
    "engagement": 70.0,
    "alertness": 80.0,
    "confidence": 70.0,
}

# class -> [(score, offset, slope)], applied as offset + slope * confidence
CLASS_ADJUSTMENTS: Dict[str, List[Tuple[str, float, float]]] = {
    "professional": [("professionalism", 10.0, 15.0), ("confidence", 10.0, 20.0)],
    "engaged": [("engagement", 15.0, 15.0), ("alertness", 0.0, 20.0)],
    "confident": [("confidence", 15.0, 15.0), ("professionalism", 5.0, 10.0)],
    "distracted": [("engagement", 0.0, -40.0), ("alertness", 0.0, -40.0)],
    "tired": [("alertness", 0.0, -50.0), ("engagement", 0.0, -30.0)],
    "nervous": [("confidence", 0.0, -30.0)],
    "unprofessional": [("professionalism", 0.0, -45.0)],
}
CLASS_ALIASES = {"fatigued": "tired", "anxious": "nervous"}

CLASS_DISTRACTIONS = {
    "distracted": "Distracted behavior detected",
    "tired": "Signs of fatigue detected",
    "unprofessional": "Unprofessional behavior detected",
}

# Secondary predictions only ever push a dimension up.
SECONDARY_CLASS_THRESHOLD = 0.7
SECONDARY_CLASS_WEIGHT = 10.0
SECONDARY_CLASS_DIMENSIONS = {
    "professional": "professionalism",
    "engaged": "engagement",
    "confident": "confidence",
}

HIGH_EYE_CONTACT = 0.8
LOW_EYE_CONTACT = 0.4
STABLE_HEAD_SCORE = 80.0
BLINK_RATE_RANGE = (5.0, 25.0)
ABNORMAL_BLINK_FLAG = "Abnormal blink pattern"


def head_stability_score(variance: float) -> float:
    """Map head-position variance (unbounded, lower = steadier) to 0-100."""
    return float(np.clip((1.0 - variance * 1000.0) * 100.0, 0.0, 100.0))


@dataclass
class ImpressionClassification:
    """One external classifier result."""
    top_class: str
    confidence: float
    all_class_probabilities: Dict[str, float] = field(default_factory=dict)
    timestamp_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topClass": self.top_class,
            "confidence": self.confidence,
            "allClassProbabilities": dict(self.all_class_probabilities),
            "timestampMs": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImpressionClassification":
        return cls(
            top_class=str(data.get("topClass", "")),
            confidence=float(data.get("confidence", 0.0)),
            all_class_probabilities={str(k): float(v) for k, v in (data.get("allClassProbabilities") or {}).items()},
            timestamp_ms=float(data.get("timestampMs", 0.0)),
        )


@dataclass
class CombinedAnalytics:
    """Result of one fusion pass; all scores within [0, 100]."""
    professionalism: float
    engagement: float
    alertness: float
    confidence: float
    distractions: List[str] = field(default_factory=list)
    timestamp_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "professionalism": round(self.professionalism, 2),
            "engagement": round(self.engagement, 2),
            "alertness": round(self.alertness, 2),
            "confidence": round(self.confidence, 2),
            "distractions": list(self.distractions),
            "timestampMs": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CombinedAnalytics":
        return cls(
            professionalism=float(data.get("professionalism", BASELINE_SCORES["professionalism"])),
            engagement=float(data.get("engagement", BASELINE_SCORES["engagement"])),
            alertness=float(data.get("alertness", BASELINE_SCORES["alertness"])),
            confidence=float(data.get("confidence", BASELINE_SCORES["confidence"])),
            distractions=list(data.get("distractions") or []),
            timestamp_ms=float(data.get("timestampMs", 0.0)),
        )


def _normalize_class(name: str) -> str:
    key = (name or "").strip().lower()
    return CLASS_ALIASES.get(key, key)


def _flag(distractions: List[str], message: str) -> None:
    if message not in distractions:
        distractions.append(message)


class BehaviorScoreCombiner:
    """
    Fuses impression classifications and aggregated signals.

    Stateless; one instance can serve every session.
    """

    def combine(
        self,
        summary: Optional[SignalSummary],
        impression: Optional[ImpressionClassification],
        timestamp_ms: Optional[float] = None,
    ) -> CombinedAnalytics:
        """
        Run one fusion pass.

        Args:
            summary: Latest SignalSummary, or None when no frames were aggregated yet
            impression: Latest classification, or None (class step skipped)
            timestamp_ms: Result timestamp; defaults to the impression's, then now

        Returns:
            CombinedAnalytics with clamped scores
        """
        scores = dict(BASELINE_SCORES)
        distractions: List[str] = []

        if impression is not None:
            self._apply_classification(scores, distractions, impression)
        if summary is not None:
            self._apply_signals(scores, distractions, summary)

        for key in SCORE_KEYS:
            scores[key] = float(np.clip(scores[key], 0.0, 100.0))

        if timestamp_ms is None:
            timestamp_ms = impression.timestamp_ms if impression is not None and impression.timestamp_ms else time.time() * 1000.0
        return CombinedAnalytics(distractions=distractions, timestamp_ms=float(timestamp_ms), **scores)

    @staticmethod
    def _apply_classification(
        scores: Dict[str, float],
        distractions: List[str],
        impression: ImpressionClassification,
    ) -> None:
        top = _normalize_class(impression.top_class)
        conf = float(np.clip(impression.confidence, 0.0, 1.0))
        for key, offset, slope in CLASS_ADJUSTMENTS.get(top, ()):
            scores[key] += offset + slope * conf
        if top in CLASS_DISTRACTIONS:
            _flag(distractions, CLASS_DISTRACTIONS[top])

        for name, prob in impression.all_class_probabilities.items():
            cls = _normalize_class(name)
            if cls == top or prob <= SECONDARY_CLASS_THRESHOLD:
                continue
            key = SECONDARY_CLASS_DIMENSIONS.get(cls)
            if key:
                scores[key] += float(prob) * SECONDARY_CLASS_WEIGHT

    @staticmethod
    def _apply_signals(scores: Dict[str, float], distractions: List[str], summary: SignalSummary) -> None:
        eye = summary.eye_contact_pct / 100.0
        if eye > HIGH_EYE_CONTACT:
            scores["engagement"] += 15.0
            scores["confidence"] += 10.0
        elif eye < LOW_EYE_CONTACT:
            scores["engagement"] -= 20.0
            scores["confidence"] -= 15.0

        if head_stability_score(summary.head_stability) > STABLE_HEAD_SCORE:
            scores["alertness"] += 10.0
            scores["professionalism"] += 5.0

        if summary.posture is Posture.FORWARD:
            scores["engagement"] += 10.0
        elif summary.posture is Posture.BACK:
            scores["engagement"] -= 10.0
            scores["alertness"] -= 5.0

        # A zero-length window has no measured blink rate.
        low, high = BLINK_RATE_RANGE
        if summary.duration_sec > 0 and (summary.blink_rate_per_min > high or summary.blink_rate_per_min < low):
            scores["alertness"] -= 15.0
            _flag(distractions, ABNORMAL_BLINK_FLAG)


_combiner: Optional[BehaviorScoreCombiner] = None


def get_behavior_combiner() -> BehaviorScoreCombiner:
    """Return the shared combiner (lazy init)."""
    global _combiner
    if _combiner is None:
        _combiner = BehaviorScoreCombiner()
    return _combiner
