"""
Helper utility functions.

This module contains reusable utility functions used throughout the application.
"""

from typing import Any, Dict

import config


def build_config_response() -> Dict[str, Any]:
    """
    Build a complete configuration response dictionary.

    This function aggregates all public configuration settings into a single
    dictionary for the /config/all endpoint. Keys and secrets are never included.

    Returns:
        dict: Complete configuration dictionary
    """
    return {
        "foundry": {
            "configured": config.is_foundry_configured(),
            "deploymentName": config.FOUNDRY_DEPLOYMENT_NAME,
            "apiVersion": config.AZURE_FOUNDRY_API_VERSION,
            "timeoutSec": config.LLM_TIMEOUT_SEC,
        },
        "classifier": {
            "mode": config.resolve_classifier_mode(),
            "minIntervalSec": config.CLASSIFIER_MIN_INTERVAL_SEC,
            "confidence": config.CLASSIFIER_CONFIDENCE,
        },
        "capture": {
            "captureIntervalMs": config.CAPTURE_INTERVAL_MS,
            "aggregateEveryNFrames": config.AGGREGATE_EVERY_N_FRAMES,
            "frameWindowMaxSamples": config.FRAME_WINDOW_MAX_SAMPLES,
            "frameSessionMaxSamples": config.FRAME_SESSION_MAX_SAMPLES,
            "minDetectionConfidence": config.MIN_DETECTION_CONFIDENCE,
        },
        "signals": config.get_signal_thresholds(),
        "interview": {
            "maxDepth": config.INTERVIEW_MAX_DEPTH,
            "defaultJobTitle": config.DEFAULT_JOB_TITLE,
            "passThreshold": config.PASS_THRESHOLD_OVERALL,
            "weights": config.get_score_weights(),
        },
        "sessionStore": config.SESSION_STORE,
    }
