"""
Flask routes for Round1.

Handles health/config, interview session lifecycle (start, question, answer,
complete, report) and behavior capture (browser landmarks, server-side frame
detection, impression classification, live signals).

Sessions live in a process registry and are saved to the session store after
every significant mutation; a registry miss rehydrates from the store. Scored
sessions leave the registry along with their capture pipeline, and their
stored report is served from the store.
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from flask import Blueprint, jsonify, request

from behavior_tracker import BehaviorTracker
from interview_models import (
    ExternalServiceError,
    InvalidTransitionError,
    SessionBusyError,
    Speaker,
)
from interview_session import InterviewSession
from services.impression_classifier import build_impression_classifier
from services.interview_scorer import get_interview_scorer
from services.question_generator import get_question_generator
from services.session_store import get_session_store
from utils.behavior_combiner import ImpressionClassification
from utils.helpers import build_config_response

logger = logging.getLogger(__name__)

# Create a blueprint for better organization
api = Blueprint('api', __name__)

# Live sessions and their capture pipelines, keyed by session id.
_sessions: Dict[str, InterviewSession] = {}
_trackers: Dict[str, BehaviorTracker] = {}
_registry_lock = threading.Lock()


def register_routes(app) -> None:
    """Attach the API blueprint to the Flask app."""
    app.register_blueprint(api)


def reset_registry() -> None:
    """Drop all live sessions and trackers (tests, shutdown)."""
    with _registry_lock:
        for tracker in _trackers.values():
            tracker.close()
        _sessions.clear()
        _trackers.clear()


def _new_tracker() -> BehaviorTracker:
    return BehaviorTracker(classifier=build_impression_classifier())


def _lookup(session_id: str) -> Tuple[Optional[InterviewSession], Optional[BehaviorTracker]]:
    """
    Return (session, tracker) with current collaborators attached; (None, None) if unknown.

    Completed sessions are served from the store and have no tracker.
    """
    with _registry_lock:
        session = _sessions.get(session_id)
        tracker = _trackers.get(session_id)
    if session is None:
        session = InterviewSession.load(get_session_store(), session_id)
        if session is None:
            return None, None
        if not session.is_complete:
            with _registry_lock:
                session = _sessions.setdefault(session_id, session)
    if tracker is None and not session.is_complete:
        with _registry_lock:
            tracker = _trackers.setdefault(session_id, _new_tracker())
    session.attach(
        question_generator=get_question_generator(),
        scorer=get_interview_scorer(),
        store=get_session_store(),
    )
    return session, tracker


def _release(session_id: str) -> None:
    """Drop a scored session and its capture buffers from the registry; the store keeps the session."""
    with _registry_lock:
        _sessions.pop(session_id, None)
        tracker = _trackers.pop(session_id, None)
    if tracker is not None:
        tracker.close()


def _not_found(session_id: str):
    return jsonify({"error": "Unknown interview session", "sessionId": session_id}), 404


def _capture_closed(session: InterviewSession):
    return jsonify({"error": "Interview is %s; behavior capture is closed" % session.phase.value}), 409


def _json_body():
    if not request.is_json:
        return None
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _image_bytes() -> bytes:
    """Raw image body, or the first uploaded file in a multipart request."""
    data = request.get_data()
    if not data and request.files:
        f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
        if f:
            data = f.read()
    return data or b""


def _timestamp_arg() -> Optional[float]:
    value = request.args.get("timestampMs")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ============================================================================
# Health and configuration
# ============================================================================

@api.route("/health", methods=["GET"])
def health():
    """Liveness check."""
    return jsonify({"status": "ok"})


@api.route("/favicon.ico")
def favicon():
    """
    Handle favicon requests.

    Returns:
        Response: Empty 204 response
    """
    return "", 204


@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all public configuration in one endpoint.

    Returns:
        JSON: Configuration dictionary (no secrets)
    """
    return jsonify(build_config_response())


# ============================================================================
# Interview Session Routes
# ============================================================================

@api.route("/interview/start", methods=["POST"])
def start_interview():
    """
    Create an interview session.

    Request Body:
        {
            "jobDescription": "...",
            "skillsRequired": ["python", ...],
            "resume": {"summary": "...", "skills": [...], "experience": [{title, company, bullets}]},
            "maxDepth": 5,            (optional)
            "jobTitle": "..."         (optional)
        }

    Returns:
        JSON: session state, 201
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    job_description = (data.get("jobDescription") or "").strip()
    if not job_description:
        return jsonify({"error": "Missing 'jobDescription'"}), 400
    skills = data.get("skillsRequired") or []
    if not isinstance(skills, list):
        return jsonify({"error": "'skillsRequired' must be a list"}), 400
    resume = data.get("resume") or {}
    if not isinstance(resume, dict):
        return jsonify({"error": "'resume' must be an object"}), 400

    try:
        max_depth = data.get("maxDepth")
        session = InterviewSession(
            job_description=job_description,
            skills_required=skills,
            resume=resume,
            max_depth=None if max_depth is None else int(max_depth),
            job_title=data.get("jobTitle"),
            store=get_session_store(),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"error": "Invalid interview settings", "details": str(e)}), 400

    try:
        tracker = _new_tracker()
    except ValueError as e:
        logger.warning("Impression classifier unavailable: %s", e)
        return jsonify({"error": "Impression classifier is not configured", "details": str(e)}), 500

    session.save()
    with _registry_lock:
        _sessions[session.id] = session
        _trackers[session.id] = tracker
    logger.info("Interview %s started (maxDepth=%d)", session.id, session.max_depth)
    return jsonify(session.to_dict()), 201


@api.route("/interview/<session_id>", methods=["GET"])
def get_interview(session_id):
    """Return the session state."""
    session, _ = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    return jsonify(session.to_dict())


@api.route("/interview/<session_id>/question", methods=["POST"])
def next_question(session_id):
    """
    Generate the next interview question.

    Returns:
        JSON: {"done": false, "question": {...}} or {"done": true} when the
        interview should be completed
    """
    session, _ = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    try:
        question = session.generate_next_question()
    except (SessionBusyError, InvalidTransitionError) as e:
        return jsonify({"error": str(e)}), 409
    except ExternalServiceError as e:
        return jsonify({"error": "Question generation failed", "details": str(e)}), 502
    if question is None:
        return jsonify({"done": True, "session": session.to_dict()})
    return jsonify({"done": False, "question": question.to_dict(), "session": session.to_dict()})


@api.route("/interview/<session_id>/answer", methods=["POST"])
def submit_answer(session_id):
    """
    Record the candidate's answer and fold in the latest behavior signals.

    Request Body:
        {"text": "answer", "pausesCount": 2 (optional)}

    Returns:
        JSON: {"recorded": true, "signals": {...}, "hasMoreQuestions": bool}
    """
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return jsonify({"error": "Answer text must not be empty"}), 400
    pauses = data.get("pausesCount")
    if pauses is not None:
        try:
            pauses = int(pauses)
        except (TypeError, ValueError) as e:
            return jsonify({"error": "Invalid answer payload", "details": str(e)}), 400
        if pauses < 0:
            return jsonify({"error": "'pausesCount' must be >= 0"}), 400
    if not session.capture_open:
        return _capture_closed(session)

    try:
        session.add_message(Speaker.CANDIDATE, text)
        summary = tracker.flush() or tracker.latest_summary
        signals = session.update_from_summary(summary, tracker.latest_analytics if summary else None)
        if pauses is not None:
            signals = session.update_behavior_signals(pausesCount=pauses)
    except InvalidTransitionError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({
        "recorded": True,
        "signals": signals.to_dict(),
        "hasMoreQuestions": session.has_more_questions,
    })


@api.route("/interview/<session_id>/signals", methods=["PUT"])
def put_signals(session_id):
    """
    Merge behavior-signal fields supplied by the client.

    Request Body:
        {"attentionScoreAvg": 80, "pausesCount": 3, ...}
    """
    session, _ = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    try:
        signals = session.update_behavior_signals(data)
    except InvalidTransitionError as e:
        return jsonify({"error": str(e)}), 409
    except (TypeError, ValueError) as e:
        return jsonify({"error": "Invalid behavior signals", "details": str(e)}), 400
    return jsonify({"signals": signals.to_dict()})


@api.route("/interview/<session_id>/complete", methods=["POST"])
def complete_interview(session_id):
    """
    Score the interview. Calling again returns the cached score.

    The behavioral report is built here from the final aggregate and stored
    with the score; the capture pipeline is released afterwards.

    Returns:
        JSON: {"score": {...}, "session": {...}}
    """
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    report = None
    if not session.is_complete and tracker is not None:
        try:
            session.update_from_summary(tracker.final_summary(), tracker.final_analytics())
        except InvalidTransitionError:
            pass  # completed by a concurrent request; complete_interview returns its score
        report = tracker.generate_report().to_dict()
    try:
        score = session.complete_interview(report=report)
    except SessionBusyError as e:
        return jsonify({"error": str(e)}), 409
    except ExternalServiceError as e:
        return jsonify({"error": "Scoring failed", "details": str(e)}), 502
    _release(session_id)
    return jsonify({"score": score.to_dict(), "session": session.to_dict()})


@api.route("/interview/<session_id>/report", methods=["GET"])
def interview_report(session_id):
    """
    Behavioral report stored when the interview was scored.

    Returns:
        JSON: report, or 409 while the interview is still running
    """
    session, _ = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    if not session.is_complete:
        return jsonify({"error": "Interview is not complete"}), 409
    if session.report is None:
        return jsonify({"error": "No behavioral report was stored for this interview"}), 404
    return jsonify({"report": session.report, "score": session.score.to_dict() if session.score else None})


# ============================================================================
# Behavior Capture Routes
# ============================================================================

@api.route("/interview/<session_id>/frames", methods=["POST"])
def post_frames(session_id):
    """
    Ingest detections from a browser-side face/pose detector.

    Request Body:
        {"frames": [{"timestampMs": 1234, "face": {"landmarks": [...], "blendshapes": {...}},
                     "pose": {"landmarks": [...]}}, ...]}

    Returns:
        JSON: {"ingested": n, "summary": {...} | null}
    """
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    if not session.capture_open:
        return _capture_closed(session)
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    frames = data.get("frames")
    if not isinstance(frames, list):
        return jsonify({"error": "'frames' must be a list"}), 400
    try:
        count = tracker.ingest_many([
            (f.get("face"), f.get("pose"), f.get("timestampMs"))
            for f in frames if isinstance(f, dict)
        ])
    except (TypeError, ValueError) as e:
        return jsonify({"error": "Invalid frame payload", "details": str(e)}), 400
    summary = tracker.latest_summary
    return jsonify({"ingested": count, "summary": summary.to_dict() if summary else None})


@api.route("/interview/<session_id>/frame-image", methods=["POST"])
def post_frame_image(session_id):
    """
    Run server-side face/pose detection on one JPEG frame.
    Expects raw JPEG body or multipart/form-data with an image file.
    """
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    if not session.capture_open:
        return _capture_closed(session)
    data = _image_bytes()
    if not data:
        return jsonify({"error": "No image data"}), 400
    if not tracker.detector.is_available():
        return jsonify({"error": "Server-side detector is not available"}), 503
    try:
        sample = tracker.ingest_image(data, _timestamp_arg())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"sample": sample.to_dict()})


@api.route("/interview/<session_id>/classify", methods=["POST"])
def classify_frame(session_id):
    """
    Classify one JPEG frame (throttled to one call per CLASSIFIER_MIN_INTERVAL_SEC).

    A JSON body {"topClass", "confidence", "allClassProbabilities"} records a
    classification produced elsewhere instead of calling the classifier.

    Returns:
        JSON: {"classified": bool, "impression": {...} | null, "analytics": {...}}
    """
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    if not session.capture_open:
        return _capture_closed(session)
    if request.is_json:
        data = _json_body() or {}
        if not data.get("topClass"):
            return jsonify({"error": "Missing 'topClass'"}), 400
        try:
            impression = ImpressionClassification.from_dict(data)
        except (TypeError, ValueError) as e:
            return jsonify({"error": "Invalid classification", "details": str(e)}), 400
        analytics = tracker.record_classification(impression)
        return jsonify({"classified": True, "impression": impression.to_dict(), "analytics": analytics.to_dict()})

    data = _image_bytes()
    if not data:
        return jsonify({"error": "No image data"}), 400
    impression = tracker.classify(data, _timestamp_arg())
    return jsonify({
        "classified": impression is not None,
        "impression": impression.to_dict() if impression else None,
        "analytics": tracker.latest_analytics.to_dict(),
        "retryInSec": round(tracker.classifier_cadence.seconds_until_ready(), 3),
    })


@api.route("/interview/<session_id>/signals", methods=["GET"])
def get_signals(session_id):
    """Latest aggregated summary, fused analytics and session behavior signals."""
    session, tracker = _lookup(session_id)
    if session is None:
        return _not_found(session_id)
    if tracker is None:
        return jsonify({"isComplete": True, "behaviorSignals": session.behavior_signals.to_dict()})
    state = tracker.get_state()
    state["isComplete"] = session.is_complete
    state["behaviorSignals"] = session.behavior_signals.to_dict()
    return jsonify(state)
