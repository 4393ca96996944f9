"""
Interview Report Generator

Builds the candidate-facing behavioral report from the final session
SignalSummary and CombinedAnalytics: four component scores, an overall score,
a recommendation tier, and strengths / improvements from independent
threshold checks.

    technical       = mean(head stability score, min(100, duration / 300 s * 100))
    behavioral      = eye contact * 0.5 + posture (neutral 100, else 70) * 0.3
                      + max(0, 100 - fidget * 1000) * 0.2
    overall         = 0.2 technical + 0.3 behavioral + 0.25 engagement + 0.25 professionalism

Tiers are fixed: excellent >= 85, good >= 75, average >= 60, otherwise poor.
"""

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.behavior_combiner import CombinedAnalytics, ImpressionClassification, head_stability_score
from utils.signal_aggregator import Posture, SignalSummary

COMPONENT_WEIGHTS = {
    "technical": 0.2,
    "behavioral": 0.3,
    "engagement": 0.25,
    "professionalism": 0.25,
}

TIER_THRESHOLDS = (
    (85.0, "excellent"),
    (75.0, "good"),
    (60.0, "average"),
)
LOWEST_TIER = "poor"

FULL_DURATION_SEC = 300.0
POSITIVE_CLASSES = frozenset({"professional", "engaged", "confident"})
POSITIVE_CLASS_MIN_CONFIDENCE = 0.7
POSITIVE_CLASS_SHARE = 0.6
REPORT_CLASSIFICATION_LIMIT = 10

DEFAULT_STRENGTH = "Completed interview successfully"
DEFAULT_IMPROVEMENT = "Continue current approach"


def recommendation_tier(overall_score: float) -> str:
    for threshold, tier in TIER_THRESHOLDS:
        if overall_score >= threshold:
            return tier
    return LOWEST_TIER


@dataclass
class InterviewReport:
    overall_score: int
    duration_sec: float
    media_metrics: Dict[str, Any]
    impression_metrics: Dict[str, Any]
    strengths: List[str]
    improvements: List[str]
    recommendation_tier: str
    scores: Dict[str, float]
    generated_at_ms: float = field(default_factory=lambda: time.time() * 1000.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallScore": self.overall_score,
            "durationSec": round(self.duration_sec, 2),
            "mediaMetrics": dict(self.media_metrics),
            "impressionMetrics": dict(self.impression_metrics),
            "strengths": list(self.strengths),
            "improvements": list(self.improvements),
            "recommendationTier": self.recommendation_tier,
            "scores": dict(self.scores),
            "generatedAtMs": self.generated_at_ms,
        }


class InterviewReportGenerator:
    """
    Report builder for one session.

    Keeps the session's classification history (added as classifier results
    arrive) because one report strength depends on how consistent it was.
    """

    def __init__(self):
        self._classifications: List[ImpressionClassification] = []
        self._lock = threading.Lock()

    def add_classification(self, classification: ImpressionClassification) -> None:
        with self._lock:
            self._classifications.append(classification)

    def get_classifications(self) -> List[ImpressionClassification]:
        with self._lock:
            return list(self._classifications)

    def get_classification_summary(self) -> Dict[str, int]:
        """Count of classifications per top class."""
        with self._lock:
            return dict(Counter(c.top_class for c in self._classifications))

    def generate_report(
        self,
        final_summary: Optional[SignalSummary],
        final_analytics: CombinedAnalytics,
    ) -> InterviewReport:
        """
        Build the report.

        Args:
            final_summary: Aggregate over the whole session; None when no frames
                were ever captured (a neutral zero-length summary is used)
            final_analytics: Latest fused scores

        Returns:
            InterviewReport
        """
        summary = final_summary or SignalSummary(
            eye_contact_pct=0.0,
            blink_rate_per_min=0.0,
            head_stability=0.0,
            posture=Posture.NEUTRAL,
            fidget_score=0.0,
            duration_sec=0.0,
        )
        history = self.get_classifications()

        scores = {
            "technical": self._technical_score(summary),
            "behavioral": self._behavioral_score(summary),
            "engagement": float(final_analytics.engagement),
            "professionalism": float(final_analytics.professionalism),
        }
        overall = round(sum(scores[k] * w for k, w in COMPONENT_WEIGHTS.items()))

        return InterviewReport(
            overall_score=int(overall),
            duration_sec=summary.duration_sec,
            media_metrics={
                "eyeContactPct": round(summary.eye_contact_pct, 2),
                "headStabilityScore": round(head_stability_score(summary.head_stability)),
                "blinkRatePerMin": round(summary.blink_rate_per_min, 2),
                "posture": summary.posture.value,
                "fidgetScore": round(summary.fidget_score * 100),
            },
            impression_metrics={
                "professionalism": final_analytics.professionalism,
                "engagement": final_analytics.engagement,
                "alertness": final_analytics.alertness,
                "confidence": final_analytics.confidence,
                "distractions": list(final_analytics.distractions),
                "classifications": [c.to_dict() for c in history[-REPORT_CLASSIFICATION_LIMIT:]],
                "classificationSummary": dict(Counter(c.top_class for c in history)),
            },
            strengths=self._strengths(summary, final_analytics, history),
            improvements=self._improvements(summary, final_analytics),
            recommendation_tier=recommendation_tier(overall),
            scores=scores,
        )

    @staticmethod
    def _technical_score(summary: SignalSummary) -> float:
        duration_score = min(100.0, summary.duration_sec / FULL_DURATION_SEC * 100.0)
        return float(round((head_stability_score(summary.head_stability) + duration_score) / 2.0))

    @staticmethod
    def _behavioral_score(summary: SignalSummary) -> float:
        posture_score = 100.0 if summary.posture is Posture.NEUTRAL else 70.0
        natural_score = max(0.0, 100.0 - summary.fidget_score * 1000.0)
        return float(round(summary.eye_contact_pct * 0.5 + posture_score * 0.3 + natural_score * 0.2))

    @staticmethod
    def _strengths(
        summary: SignalSummary,
        analytics: CombinedAnalytics,
        history: List[ImpressionClassification],
    ) -> List[str]:
        strengths = []
        if summary.eye_contact_pct > 70:
            strengths.append("Excellent eye contact")
        if summary.posture is Posture.NEUTRAL:
            strengths.append("Good posture maintained")
        if analytics.professionalism > 80:
            strengths.append("Professional appearance")
        if analytics.engagement > 80:
            strengths.append("High engagement level")
        if analytics.confidence > 80:
            strengths.append("Confident presentation")
        if not analytics.distractions:
            strengths.append("Distraction-free environment")
        if history:
            positive = [
                c for c in history
                if c.top_class.lower() in POSITIVE_CLASSES and c.confidence > POSITIVE_CLASS_MIN_CONFIDENCE
            ]
            if len(positive) > len(history) * POSITIVE_CLASS_SHARE:
                strengths.append("Consistently positive behavior classification")
        return strengths or [DEFAULT_STRENGTH]

    @staticmethod
    def _improvements(summary: SignalSummary, analytics: CombinedAnalytics) -> List[str]:
        improvements = []
        if summary.eye_contact_pct < 60:
            improvements.append("Increase eye contact with camera")
        if summary.posture is Posture.BACK:
            improvements.append("Sit up straighter, avoid leaning back")
        elif summary.posture is Posture.FORWARD:
            improvements.append("Relax posture, avoid leaning too forward")
        if analytics.professionalism < 70:
            improvements.append("Consider more professional attire")
        if analytics.engagement < 70:
            improvements.append("Show more enthusiasm and interest")
        if analytics.confidence < 70:
            improvements.append("Project more confidence")
        if analytics.distractions:
            improvements.append("Remove distractions from environment")
        if summary.duration_sec > 0:
            if summary.blink_rate_per_min < 8:
                improvements.append("Try to blink more naturally")
            elif summary.blink_rate_per_min > 25:
                improvements.append("Reduce excessive blinking, stay relaxed")
        return improvements or [DEFAULT_IMPROVEMENT]
