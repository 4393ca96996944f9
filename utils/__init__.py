"""
Utilities package for Round1.

This package contains the behavioral-signal pipeline: per-frame feature
extraction, window aggregation, score fusion with impression classifications,
the interview report, and face/pose detection adapters.
"""

from .frame_features import FrameFeatureExtractor, FrameSample
from .signal_aggregator import SignalAggregator, SignalSummary, Posture
from .behavior_combiner import BehaviorScoreCombiner, CombinedAnalytics, ImpressionClassification
from .interview_report import InterviewReportGenerator, InterviewReport
from .frame_buffer import FrameBuffer, CallCadence
from .face_detection_interface import FrameDetectorInterface, FaceDetectionResult, PoseDetectionResult

__all__ = [
    'FrameFeatureExtractor',
    'FrameSample',
    'SignalAggregator',
    'SignalSummary',
    'Posture',
    'BehaviorScoreCombiner',
    'CombinedAnalytics',
    'ImpressionClassification',
    'InterviewReportGenerator',
    'InterviewReport',
    'FrameBuffer',
    'CallCadence',
    'FrameDetectorInterface',
    'FaceDetectionResult',
    'PoseDetectionResult',
]
