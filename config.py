"""
=============================================================================
CONFIGURATION FOR ROUND1 INTERVIEW SERVICE (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
modules read from it; nothing secret is stored in the code. Values come from
the environment (your .env file or system variables), so you can use different
keys for development and production without changing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Azure AI Foundry: The LLM that generates interview questions and scores.
  2. Impression classifier: External image classifier (Roboflow-style) or the
     deterministic simulated classifier.
  3. Face/pose detection: MediaPipe model files and confidence floor.
  4. Behavior signals: Thresholds for eye contact, blinks, posture, buffers.
  5. Interview: Default depth, job title, scoring weights, storage.
  6. Server: Host, port, debug mode, log level.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. AZURE_FOUNDRY_KEY) override everything.
  - If an env var is not set, we use a default where it's safe (e.g. port 5000).
  - We never put real API keys or secrets as defaults in code.
=============================================================================
"""

import os
from typing import Dict, Optional


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ============================================================================
# AZURE AI FOUNDRY (question generation and scoring)
# ============================================================================
# Both prompt flows are chat completions that must answer with a JSON object.
# Old names (AZURE_OPENAI_*) still work.
# ----------------------------------------------------------------------------
def _sanitize_azure_foundry_config() -> None:
    global AZURE_FOUNDRY_KEY, AZURE_FOUNDRY_ENDPOINT, FOUNDRY_DEPLOYMENT_NAME, AZURE_FOUNDRY_API_VERSION
    AZURE_FOUNDRY_KEY = (AZURE_FOUNDRY_KEY or "").strip()
    FOUNDRY_DEPLOYMENT_NAME = (FOUNDRY_DEPLOYMENT_NAME or "gpt-4o").strip()
    AZURE_FOUNDRY_API_VERSION = (AZURE_FOUNDRY_API_VERSION or "2024-10-21").strip()
    ep = (AZURE_FOUNDRY_ENDPOINT or "").strip().rstrip("/")
    AZURE_FOUNDRY_ENDPOINT = ep if ep else ""


AZURE_FOUNDRY_KEY: str = (os.getenv("AZURE_FOUNDRY_KEY") or os.getenv("AZURE_OPENAI_KEY") or "").strip()
AZURE_FOUNDRY_ENDPOINT: str = (os.getenv("AZURE_FOUNDRY_ENDPOINT") or os.getenv("AZURE_OPENAI_ENDPOINT") or "").strip().rstrip("/")
FOUNDRY_DEPLOYMENT_NAME: str = os.getenv("FOUNDRY_DEPLOYMENT_NAME") or os.getenv("DEPLOYMENT_NAME", "gpt-4o")
AZURE_FOUNDRY_API_VERSION: str = os.getenv("AZURE_FOUNDRY_API_VERSION") or os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21")
_sanitize_azure_foundry_config()

# Every LLM call is bounded; a hung turn otherwise has no way out.
LLM_TIMEOUT_SEC: float = _env_float("LLM_TIMEOUT_SEC", "30")
LLM_MAX_RETRIES: int = max(0, _env_int("LLM_MAX_RETRIES", "1"))
# Question generation is allowed a little variety; scoring should be repeatable.
QUESTION_TEMPERATURE: float = _env_float("QUESTION_TEMPERATURE", "0.7")
SCORING_TEMPERATURE: float = _env_float("SCORING_TEMPERATURE", "0.2")

# ============================================================================
# IMPRESSION CLASSIFIER (professional / engaged / distracted ... from a frame)
# ============================================================================
#   "roboflow": POST base64 JPEG to CLASSIFIER_ENDPOINT (hosted classification model).
#   "simulated": Deterministic local rotation of classes; no network. Used in demos/tests.
#   "auto": roboflow when endpoint and key are set, otherwise simulated.
# ----------------------------------------------------------------------------
CLASSIFIER_MODE: str = (os.getenv("CLASSIFIER_MODE") or "auto").strip().lower()
CLASSIFIER_ENDPOINT: str = (os.getenv("CLASSIFIER_ENDPOINT") or "").strip()
CLASSIFIER_API_KEY: str = (os.getenv("CLASSIFIER_API_KEY") or "").strip()
# Confidence floor passed to the hosted model.
CLASSIFIER_CONFIDENCE: float = _env_float("CLASSIFIER_CONFIDENCE", "0.5")
CLASSIFIER_TIMEOUT_SEC: float = _env_float("CLASSIFIER_TIMEOUT_SEC", "5")
# At most one classifier call per session per interval, whatever the frame rate.
CLASSIFIER_MIN_INTERVAL_SEC: float = _env_float("CLASSIFIER_MIN_INTERVAL_SEC", "2.0")
# Seed for the simulated classifier (same seed = same sequence of classes).
SIMULATED_CLASSIFIER_SEED: int = _env_int("SIMULATED_CLASSIFIER_SEED", "7")

# ============================================================================
# FACE / POSE DETECTION (server-side MediaPipe on uploaded frames)
# ============================================================================
# Browsers that run their own detector post landmarks to /interview/<id>/frames
# and never touch these. Model files are the MediaPipe Tasks .task bundles.
# ----------------------------------------------------------------------------
FACE_LANDMARKER_MODEL_PATH: str = os.getenv("FACE_LANDMARKER_MODEL_PATH", "models/face_landmarker.task")
POSE_LANDMARKER_MODEL_PATH: str = os.getenv("POSE_LANDMARKER_MODEL_PATH", "models/pose_landmarker_lite.task")
# Detections below this confidence are treated as absent (fallback values used).
MIN_DETECTION_CONFIDENCE: float = _env_float("MIN_DETECTION_CONFIDENCE", "0.5")

# ============================================================================
# BEHAVIOR SIGNALS (frame features and aggregation)
# ============================================================================
# Eye contact = clamp(1 - mean(8 gaze-deviation blendshapes) * scale). 2x amplifies
# small gaze shifts so a glance away registers.
EYE_CONTACT_SCALE: float = _env_float("EYE_CONTACT_SCALE", "2.0")
# Frame counts as "eye contact" when its scalar exceeds this (frame-fraction policy).
EYE_CONTACT_THRESHOLD: float = _env_float("EYE_CONTACT_THRESHOLD", "0.6")
# Blink when eyeBlinkLeft + eyeBlinkRight exceeds this (0-2 combined scale).
BLINK_SUM_THRESHOLD: float = _env_float("BLINK_SUM_THRESHOLD", "1.0")
# Frames ignored after a counted blink so one eye closure counts once.
BLINK_DEBOUNCE_FRAMES: int = max(0, _env_int("BLINK_DEBOUNCE_FRAMES", "5"))
# Mean lean beyond +/- this is "back" / "forward".
POSTURE_LEAN_THRESHOLD: float = _env_float("POSTURE_LEAN_THRESHOLD", "0.02")
# Image y grows downward, so the raw hip-minus-shoulder offset of an upright sitter
# is the torso height on screen (about 0.3-0.4). When LEAN_NEUTRAL_OFFSET is unset,
# neutral is the mean raw offset of the first LEAN_CALIBRATION_FRAMES pose frames of
# each session; set it to pin a fixed neutral for a known camera setup.
LEAN_NEUTRAL_OFFSET: Optional[float] = (
    _env_float("LEAN_NEUTRAL_OFFSET", "0") if os.getenv("LEAN_NEUTRAL_OFFSET", "").strip() else None
)
LEAN_CALIBRATION_FRAMES: int = max(1, _env_int("LEAN_CALIBRATION_FRAMES", "20"))
# Face mesh index used as the head reference point.
NOSE_TIP_INDEX: int = _env_int("NOSE_TIP_INDEX", "1")

# Live window: drained on every aggregation pass; bounded in case aggregation stalls.
FRAME_WINDOW_MAX_SAMPLES: int = max(1, _env_int("FRAME_WINDOW_MAX_SAMPLES", "300"))
# Session window: kept for the final report (18000 = 30 min at 10 fps).
FRAME_SESSION_MAX_SAMPLES: int = max(1, _env_int("FRAME_SESSION_MAX_SAMPLES", "18000"))
# Aggregate every N ingested frames (30 = every 3 s at 10 fps).
AGGREGATE_EVERY_N_FRAMES: int = max(1, _env_int("AGGREGATE_EVERY_N_FRAMES", "30"))
# Suggested client capture cadence; published in /config/all.
CAPTURE_INTERVAL_MS: int = max(10, _env_int("CAPTURE_INTERVAL_MS", "100"))

# ============================================================================
# INTERVIEW (session defaults, scoring weights, persistence)
# ============================================================================
INTERVIEW_MAX_DEPTH: int = max(0, _env_int("INTERVIEW_MAX_DEPTH", "5"))
DEFAULT_JOB_TITLE: str = os.getenv("DEFAULT_JOB_TITLE", "Software Engineer")
# Overall score needed to pass (0-100).
PASS_THRESHOLD_OVERALL: float = _env_float("PASS_THRESHOLD_OVERALL", "70")
SCORE_WEIGHT_INTERVIEW: float = _env_float("SCORE_WEIGHT_INTERVIEW", "0.6")
SCORE_WEIGHT_RESUME: float = _env_float("SCORE_WEIGHT_RESUME", "0.2")
SCORE_WEIGHT_BEHAVIOR: float = _env_float("SCORE_WEIGHT_BEHAVIOR", "0.2")

#   "memory": sessions live in process memory (lost on restart).
#   "file": one JSON document per session under SESSION_STORE_DIR.
SESSION_STORE: str = (os.getenv("SESSION_STORE") or "memory").strip().lower()
SESSION_STORE_DIR: str = os.getenv("SESSION_STORE_DIR", "data/sessions")

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = _env_bool("FLASK_DEBUG", "false")
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")
LOG_LEVEL: str = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Print warnings when required configuration is missing (no secrets in code; set env vars).
    Call from app startup (e.g. app.py) to help operators. Does not raise.
    """
    import sys
    missing = []
    if not AZURE_FOUNDRY_KEY:
        missing.append("AZURE_FOUNDRY_KEY (or AZURE_OPENAI_KEY)")
    if not AZURE_FOUNDRY_ENDPOINT:
        missing.append("AZURE_FOUNDRY_ENDPOINT (or AZURE_OPENAI_ENDPOINT)")
    if CLASSIFIER_MODE == "roboflow" and not is_classifier_configured():
        missing.append("CLASSIFIER_ENDPOINT / CLASSIFIER_API_KEY")
    if missing:
        print("Config warning: the following env vars are not set. Some features may be disabled:", ", ".join(missing), file=sys.stderr)


def is_foundry_configured() -> bool:
    """True when both the Foundry key and endpoint are set."""
    return bool(AZURE_FOUNDRY_KEY and AZURE_FOUNDRY_ENDPOINT)


def is_classifier_configured() -> bool:
    """True when the hosted impression classifier can be called."""
    return bool(CLASSIFIER_ENDPOINT and CLASSIFIER_API_KEY)


def resolve_classifier_mode() -> str:
    """
    Resolve CLASSIFIER_MODE to a concrete implementation name.

    Returns:
        "roboflow" or "simulated"
    """
    if CLASSIFIER_MODE == "roboflow":
        return "roboflow"
    if CLASSIFIER_MODE == "simulated":
        return "simulated"
    return "roboflow" if is_classifier_configured() else "simulated"


def get_score_weights() -> Dict[str, float]:
    """Scoring weights passed to the scoring flow (interview / resume / behavior)."""
    return {
        "interview": SCORE_WEIGHT_INTERVIEW,
        "resume": SCORE_WEIGHT_RESUME,
        "behavior": SCORE_WEIGHT_BEHAVIOR,
    }


def get_signal_thresholds() -> Dict[str, Optional[float]]:
    """Behavior-signal thresholds, published to clients that run their own detector."""
    return {
        "eyeContactScale": EYE_CONTACT_SCALE,
        "eyeContactThreshold": EYE_CONTACT_THRESHOLD,
        "blinkSumThreshold": BLINK_SUM_THRESHOLD,
        "blinkDebounceFrames": BLINK_DEBOUNCE_FRAMES,
        "postureLeanThreshold": POSTURE_LEAN_THRESHOLD,
        "leanNeutralOffset": LEAN_NEUTRAL_OFFSET,
        "leanCalibrationFrames": LEAN_CALIBRATION_FRAMES,
        "noseTipIndex": NOSE_TIP_INDEX,
    }


def get_store_dir(override: Optional[str] = None) -> str:
    """Absolute directory for the JSON file session store."""
    path = override or SESSION_STORE_DIR
    if not os.path.isabs(path):
        path = os.path.join(os.path.dirname(os.path.abspath(__file__)), path)
    return path
