"""
Behavior Tracker.

Per-session capture pipeline for webcam behavior signals:

    detection (browser landmarks or server-side MediaPipe on a JPEG)
      -> FrameFeatureExtractor -> live window + session window
      -> every AGGREGATE_EVERY_N_FRAMES samples: SignalAggregator over the
         drained live window -> BehaviorScoreCombiner with the last impression

Impression classification runs on its own cadence: classify() calls the
injected classifier at most once per CLASSIFIER_MIN_INTERVAL_SEC and keeps the
last good result when a call fails. flush() forces an aggregation pass (used
when the candidate submits an answer); final_summary() aggregates the whole
session window for the report.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

import numpy as np

import config
from utils.behavior_combiner import (
    BehaviorScoreCombiner,
    CombinedAnalytics,
    ImpressionClassification,
    get_behavior_combiner,
)
from utils.face_detection_interface import FrameDetectorInterface
from utils.frame_buffer import CallCadence, FrameBuffer
from utils.frame_features import FaceInput, FrameFeatureExtractor, FrameSample, PoseInput
from utils.interview_report import InterviewReport, InterviewReportGenerator
from utils.signal_aggregator import SignalAggregator, SignalSummary

logger = logging.getLogger(__name__)


class BehaviorTracker:
    """
    Orchestrates feature extraction, aggregation and fusion for one session.

    Usage:
        tracker = BehaviorTracker(classifier=build_impression_classifier())
        tracker.ingest(face, pose, timestamp_ms)      # per frame
        tracker.classify(jpeg_bytes)                  # throttled
        summary = tracker.flush()                     # on answer submission
        report = tracker.generate_report()            # at the end
    """

    def __init__(
        self,
        classifier=None,
        detector: Optional[FrameDetectorInterface] = None,
        extractor: Optional[FrameFeatureExtractor] = None,
        aggregator: Optional[SignalAggregator] = None,
        combiner: Optional[BehaviorScoreCombiner] = None,
        aggregate_every: Optional[int] = None,
        classifier_interval_sec: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
        update_callback: Optional[Callable[[SignalSummary, CombinedAnalytics], None]] = None,
    ):
        """
        Args:
            classifier: ImpressionClassifier (or None to skip classification)
            detector: Server-side detector for ingest_image(); MediaPipe when omitted
            extractor / aggregator / combiner: Pipeline stages (defaults from config)
            aggregate_every: Frames between aggregation passes
            classifier_interval_sec: Minimum seconds between classifier calls
            clock: Monotonic clock for the classifier cadence (tests)
            update_callback: Called with (summary, analytics) after each aggregation pass
        """
        self.classifier = classifier
        self._detector = detector
        self.extractor = extractor or FrameFeatureExtractor()
        self.aggregator = aggregator or SignalAggregator()
        self.combiner = combiner or get_behavior_combiner()
        self.aggregate_every = max(1, int(aggregate_every or config.AGGREGATE_EVERY_N_FRAMES))
        interval = config.CLASSIFIER_MIN_INTERVAL_SEC if classifier_interval_sec is None else classifier_interval_sec
        self.classifier_cadence = CallCadence(interval, clock=clock)
        self.update_callback = update_callback

        self.live_window = FrameBuffer(config.FRAME_WINDOW_MAX_SAMPLES)
        self.session_window = FrameBuffer(config.FRAME_SESSION_MAX_SAMPLES)
        self.report_generator = InterviewReportGenerator()

        self._since_aggregate = 0
        self._frames_total = 0
        self._latest_summary: Optional[SignalSummary] = None
        self._latest_impression: Optional[ImpressionClassification] = None
        self._latest_analytics: CombinedAnalytics = self.combiner.combine(None, None)
        self.lock = threading.Lock()

    @property
    def detector(self) -> FrameDetectorInterface:
        if self._detector is None:
            from utils.mediapipe_detector import get_frame_detector
            self._detector = get_frame_detector()
        return self._detector

    @property
    def latest_summary(self) -> Optional[SignalSummary]:
        with self.lock:
            return self._latest_summary

    @property
    def latest_analytics(self) -> CombinedAnalytics:
        with self.lock:
            return self._latest_analytics

    @property
    def latest_impression(self) -> Optional[ImpressionClassification]:
        with self.lock:
            return self._latest_impression

    @property
    def frames_total(self) -> int:
        with self.lock:
            return self._frames_total

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def ingest(self, face: FaceInput, pose: PoseInput, timestamp_ms: Optional[float] = None) -> FrameSample:
        """
        Extract one frame's features and buffer them; aggregates every N frames.

        Returns:
            The FrameSample that was buffered
        """
        sample = self.extractor.extract(face, pose, timestamp_ms)
        self.live_window.append(sample)
        self.session_window.append(sample)
        with self.lock:
            self._frames_total += 1
            self._since_aggregate += 1
            due = self._since_aggregate >= self.aggregate_every
        if due:
            self.flush()
        return sample

    def ingest_many(self, frames: List[Tuple[FaceInput, PoseInput, Optional[float]]]) -> int:
        """Ingest a batch of (face, pose, timestamp_ms) tuples; returns the count ingested."""
        for face, pose, ts in frames:
            self.ingest(face, pose, ts)
        return len(frames)

    def ingest_image(self, image_bytes: bytes, timestamp_ms: Optional[float] = None) -> FrameSample:
        """
        Decode a JPEG/PNG frame, run the server-side detector, and ingest the result.

        Raises:
            ValueError: If the bytes are not a decodable image
        """
        import cv2

        buf = np.frombuffer(image_bytes or b"", dtype=np.uint8)
        image = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
        if image is None:
            raise ValueError("Invalid or unsupported image")
        face, pose = self.detector.detect(image)
        return self.ingest(face, pose, timestamp_ms)

    def flush(self) -> Optional[SignalSummary]:
        """
        Aggregate the live window now (snapshot-then-clear) and refresh analytics.

        Returns:
            The new summary, or None when no frames arrived since the last pass
            (the previous summary is kept)
        """
        samples = self.live_window.drain()
        with self.lock:
            self._since_aggregate = 0
        summary = self.aggregator.aggregate(samples)
        if summary is None:
            return None
        with self.lock:
            self._latest_summary = summary
            self._latest_analytics = self.combiner.combine(summary, self._latest_impression)
            analytics = self._latest_analytics
        if self.update_callback:
            try:
                self.update_callback(summary, analytics)
            except Exception as e:
                logger.warning("Behavior update callback failed: %s", e)
        return summary

    # ------------------------------------------------------------------
    # Impression classification
    # ------------------------------------------------------------------

    def classify(self, image_bytes: bytes, timestamp_ms: Optional[float] = None) -> Optional[ImpressionClassification]:
        """
        Classify a frame if the cadence allows it.

        Returns:
            The new classification, or None when throttled, when no classifier is
            configured, or when the call failed (last-known result is kept)
        """
        if self.classifier is None or not self.classifier_cadence.try_acquire():
            return None
        if timestamp_ms is None:
            timestamp_ms = time.time() * 1000.0
        result = self.classifier.classify(image_bytes, timestamp_ms)
        if result is None:
            logger.info("Impression classifier returned nothing; keeping last-known analytics")
            return None
        self.record_classification(result)
        return result

    def record_classification(self, result: ImpressionClassification) -> CombinedAnalytics:
        """Store a classification (from classify() or an external caller) and re-fuse."""
        self.report_generator.add_classification(result)
        with self.lock:
            self._latest_impression = result
            self._latest_analytics = self.combiner.combine(self._latest_summary, result)
            return self._latest_analytics

    # ------------------------------------------------------------------
    # End of session
    # ------------------------------------------------------------------

    def final_summary(self) -> Optional[SignalSummary]:
        """Aggregate every sample kept in the session window."""
        return self.aggregator.aggregate(self.session_window.snapshot())

    def final_analytics(self) -> CombinedAnalytics:
        """Fuse the session-wide summary with the last impression."""
        summary = self.final_summary()
        with self.lock:
            impression = self._latest_impression
        return self.combiner.combine(summary, impression)

    def generate_report(self) -> InterviewReport:
        summary = self.final_summary()
        with self.lock:
            impression = self._latest_impression
        return self.report_generator.generate_report(summary, self.combiner.combine(summary, impression))

    def get_state(self) -> dict:
        """Snapshot for GET /interview/<id>/signals."""
        with self.lock:
            summary = self._latest_summary
            analytics = self._latest_analytics
            impression = self._latest_impression
            frames = self._frames_total
        return {
            "framesTotal": frames,
            "bufferedFrames": len(self.live_window),
            "summary": summary.to_dict() if summary else None,
            "analytics": analytics.to_dict(),
            "impression": impression.to_dict() if impression else None,
            "classificationSummary": self.report_generator.get_classification_summary(),
            "classifierReadyInSec": round(self.classifier_cadence.seconds_until_ready(), 3),
            "leanNeutralOffset": self.extractor.neutral_offset,
        }

    def close(self) -> None:
        """Clear buffers. The shared detector is not closed here."""
        self.live_window.clear()
        self.session_window.clear()
