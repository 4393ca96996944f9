"""
Interview Session Controller.

Owns one interview: the append-only transcript, the latest behavior signals,
the question/answer turn loop and the one-time handoff to scoring.

Phases:

    AWAITING_QUESTION --generate_next_question()--> AWAITING_ANSWER
    AWAITING_ANSWER   --add_message(candidate)-----> AWAITING_QUESTION
    AWAITING_*        --complete_interview()-------> SCORING --ok--> COMPLETED
                                                             --error--> (previous phase)

The loop ends (generate_next_question() returns None) when the transcript
holds 2 * max_depth entries, when the last question carried the wrap-up
signal, or when the question collaborator has nothing more to ask. The caller
then calls complete_interview(). is_complete flips only after scoring succeeds,
so a failed scoring call leaves the session retryable.

generate_next_question() and complete_interview() call external services; a
second call on the same session while one is in flight raises SessionBusyError
instead of queueing a parallel call.
"""

import logging
import threading
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import config
from interview_models import (
    BehaviorSignals,
    ExternalServiceError,
    GeneratedQuestion,
    InvalidTransitionError,
    Resume,
    ScoreResult,
    SessionBusyError,
    Speaker,
    TranscriptEntry,
    utc_now_iso,
)
from utils.behavior_combiner import CombinedAnalytics, SCORE_KEYS
from utils.signal_aggregator import SignalSummary

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    AWAITING_QUESTION = "awaiting_question"
    AWAITING_ANSWER = "awaiting_answer"
    SCORING = "scoring"
    COMPLETED = "completed"


def new_session_id() -> str:
    return "interview-" + uuid.uuid4().hex


def _word_count(text: str) -> int:
    return len(text.split())


class InterviewSession:
    """
    One interview session (aggregate root).

    Usage:
        session = InterviewSession(job_description, skills, resume, max_depth=5)
        while True:
            q = session.generate_next_question()
            if q is None:
                break
            session.add_message(Speaker.CANDIDATE, get_answer(q.question))
            session.update_from_summary(tracker.flush())
        score = session.complete_interview()
    """

    def __init__(
        self,
        job_description: str,
        skills_required: Sequence[str],
        resume: Union[Resume, Dict[str, Any], None],
        max_depth: Optional[int] = None,
        job_title: Optional[str] = None,
        session_id: Optional[str] = None,
        question_generator=None,
        scorer=None,
        store=None,
    ):
        """
        Args:
            job_description: Job description text
            skills_required: Skills the job requires
            resume: Candidate resume (Resume or its dict form)
            max_depth: Max question/answer pairs (default config.INTERVIEW_MAX_DEPTH)
            job_title: Job title passed to scoring (default config.DEFAULT_JOB_TITLE)
            session_id: Existing id (rehydration); a new one is generated when omitted
            question_generator: Object with generate(request) -> GeneratedQuestion | None
            scorer: Object with score(request) -> ScoreResult
            store: SessionStore; when set the session saves itself after each mutation
        """
        max_depth = config.INTERVIEW_MAX_DEPTH if max_depth is None else int(max_depth)
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self.id = session_id or new_session_id()
        self.job_title = job_title or config.DEFAULT_JOB_TITLE
        self.job_description = job_description or ""
        self.skills_required = [str(s) for s in (skills_required or [])]
        self.resume = resume if isinstance(resume, Resume) else Resume.from_dict(resume)
        self.max_depth = max_depth
        self.created_at = utc_now_iso()
        self.completed_at: Optional[str] = None

        self._transcript: List[TranscriptEntry] = []
        self._signals = BehaviorSignals()
        self._phase = SessionPhase.AWAITING_QUESTION
        self._score: Optional[ScoreResult] = None
        self._report: Optional[Dict[str, Any]] = None
        self._current_question: Optional[GeneratedQuestion] = None
        self._wrap_up_requested = False
        self._questions_exhausted = False

        self._question_generator = question_generator
        self._scorer = scorer
        self.store = store
        self._lock = threading.RLock()
        self._in_flight = threading.Lock()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def is_complete(self) -> bool:
        return self._phase is SessionPhase.COMPLETED

    @property
    def capture_open(self) -> bool:
        """False once scoring has started; behavior capture and answers are closed."""
        return self._phase not in (SessionPhase.SCORING, SessionPhase.COMPLETED)

    @property
    def score(self) -> Optional[ScoreResult]:
        return self._score

    @property
    def report(self) -> Optional[Dict[str, Any]]:
        """Behavioral report stored when the interview was scored."""
        return self._report

    @property
    def transcript(self) -> List[TranscriptEntry]:
        with self._lock:
            return list(self._transcript)

    @property
    def behavior_signals(self) -> BehaviorSignals:
        return self._signals

    @property
    def current_question(self) -> Optional[GeneratedQuestion]:
        return self._current_question

    @property
    def turn_budget_exhausted(self) -> bool:
        return len(self._transcript) >= 2 * self.max_depth

    @property
    def has_more_questions(self) -> bool:
        """False once the loop has ended and the caller should complete the interview."""
        with self._lock:
            return not (
                self.is_complete
                or self.turn_budget_exhausted
                or self._wrap_up_requested
                or self._questions_exhausted
            )

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def question_generator(self):
        if self._question_generator is None:
            from services.question_generator import get_question_generator
            return get_question_generator()
        return self._question_generator

    @property
    def scorer(self):
        if self._scorer is None:
            from services.interview_scorer import get_interview_scorer
            return get_interview_scorer()
        return self._scorer

    def attach(self, question_generator=None, scorer=None, store=None) -> "InterviewSession":
        """Set collaborators after rehydration; returns self."""
        if question_generator is not None:
            self._question_generator = question_generator
        if scorer is not None:
            self._scorer = scorer
        if store is not None:
            self.store = store
        return self

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    def generate_next_question(self) -> Optional[GeneratedQuestion]:
        """
        Ask the question collaborator for the next question and append it as an agent turn.

        Returns:
            GeneratedQuestion, or None when the interview should be finalized

        Raises:
            SessionBusyError: Another external call for this session is in flight
            InvalidTransitionError: The previous question has not been answered yet
            ExternalServiceError: The question collaborator failed (session unchanged)
        """
        if not self._in_flight.acquire(blocking=False):
            raise SessionBusyError("Session %s is busy" % self.id)
        try:
            with self._lock:
                if self._phase in (SessionPhase.COMPLETED, SessionPhase.SCORING):
                    logger.info("Session %s: no question, interview is %s", self.id, self._phase.value)
                    return None
                if self._phase is SessionPhase.AWAITING_ANSWER:
                    raise InvalidTransitionError("Session %s is waiting for an answer" % self.id)
                if not self.has_more_questions:
                    return None
                request = self._question_request()

            try:
                question = self.question_generator.generate(request)
            except Exception as e:
                logger.warning("Question generation failed for %s: %s", self.id, e)
                raise ExternalServiceError("Question generation failed: %s" % e) from e

            with self._lock:
                if question is None or not question.question:
                    self._questions_exhausted = True
                    self._save()
                    return None
                self._transcript.append(TranscriptEntry(Speaker.AGENT, question.question))
                self._current_question = question
                self._wrap_up_requested = bool(question.should_wrap_up)
                self._phase = SessionPhase.AWAITING_ANSWER
                self._save()
                return question
        finally:
            self._in_flight.release()

    def _question_request(self) -> Dict[str, Any]:
        request = {
            "jobDescription": self.job_description,
            "skillsRequired": list(self.skills_required),
            "resume": self.resume.to_dict(),
            "transcriptSoFar": [{"speaker": t.speaker.value, "text": t.text} for t in self._transcript],
            "maxDepth": self.max_depth,
        }
        if self._transcript:
            request["previousSignals"] = self._signals.to_dict()
        return request

    def add_message(self, speaker: Union[Speaker, str], text: str) -> bool:
        """
        Append a transcript entry.

        An empty candidate answer is not recorded (returns False).

        Raises:
            InvalidTransitionError: The interview is being scored or is complete
            ValueError: Unknown speaker
        """
        speaker = speaker if isinstance(speaker, Speaker) else Speaker(str(speaker).lower())
        text = (text or "").strip()
        with self._lock:
            if self._phase in (SessionPhase.COMPLETED, SessionPhase.SCORING):
                raise InvalidTransitionError("Session %s is %s; transcript is closed" % (self.id, self._phase.value))
            if speaker is Speaker.CANDIDATE and not text:
                logger.warning("Session %s: ignoring empty candidate answer", self.id)
                return False
            self._transcript.append(TranscriptEntry(speaker, text))
            if speaker is Speaker.CANDIDATE:
                if self._phase is SessionPhase.AWAITING_ANSWER:
                    self._phase = SessionPhase.AWAITING_QUESTION
            else:
                self._phase = SessionPhase.AWAITING_ANSWER
            self._signals = self._signals.merged({"speaking_ratio": self._speaking_ratio()})
            self._save()
            return True

    def _speaking_ratio(self) -> float:
        """Candidate share of transcript words, 0-100."""
        candidate = sum(_word_count(t.text) for t in self._transcript if t.speaker is Speaker.CANDIDATE)
        total = sum(_word_count(t.text) for t in self._transcript)
        return round(100.0 * candidate / total, 2) if total else 0.0

    # ------------------------------------------------------------------
    # Behavior signals
    # ------------------------------------------------------------------

    def update_behavior_signals(self, partial: Optional[Dict[str, Any]] = None, **fields) -> BehaviorSignals:
        """
        Shallow-merge fields over the current behavior signals (last write wins).

        Keys may be snake_case or camelCase.

        Raises:
            ValueError: Unknown field
            InvalidTransitionError: The interview is complete
        """
        updates = dict(partial or {})
        updates.update(fields)
        with self._lock:
            if self.is_complete:
                raise InvalidTransitionError("Session %s is complete" % self.id)
            self._signals = self._signals.merged(updates)
            self._save()
            return self._signals

    def update_from_summary(
        self,
        summary: Optional[SignalSummary],
        analytics: Optional[CombinedAnalytics] = None,
    ) -> BehaviorSignals:
        """
        Derive behavior signals from the latest aggregation (no-op without a summary).

        attention = eye-contact %, looking away = 100 - eye-contact %; the
        behavior score is the mean of the four fused analytics scores.
        """
        if summary is None:
            return self._signals
        updates = {
            "attention_score_avg": round(summary.eye_contact_pct, 2),
            "looking_away_pct_avg": round(100.0 - summary.eye_contact_pct, 2),
            "blink_rate_per_min": round(summary.blink_rate_per_min, 2),
            "head_stability": summary.head_stability,
            "lean": summary.posture.value,
            "fidget_score": summary.fidget_score,
            "duration_sec": summary.duration_sec,
        }
        if analytics is not None:
            updates["behavior_score"] = round(sum(getattr(analytics, k) for k in SCORE_KEYS) / len(SCORE_KEYS), 2)
        return self.update_behavior_signals(updates)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_interview(self, report: Optional[Dict[str, Any]] = None) -> ScoreResult:
        """
        Score the interview once.

        A completed session returns its cached score without calling the scorer.

        Args:
            report: Behavioral report (dict form) built from the final aggregate;
                stored with the score and never rebuilt afterwards

        Raises:
            SessionBusyError: Another external call for this session is in flight
            ExternalServiceError: Scoring failed; the session keeps its previous phase
        """
        if not self._in_flight.acquire(blocking=False):
            raise SessionBusyError("Session %s is busy" % self.id)
        try:
            with self._lock:
                if self._score is not None:
                    return self._score
                previous_phase = self._phase
                self._phase = SessionPhase.SCORING
                request = self._scoring_request()

            try:
                result = self.scorer.score(request)
                if result is None:
                    raise ValueError("scorer returned no result")
            except Exception as e:
                with self._lock:
                    self._phase = previous_phase
                logger.warning("Scoring failed for %s: %s", self.id, e)
                raise ExternalServiceError("Scoring failed: %s" % e) from e

            with self._lock:
                self._score = result
                self._report = dict(report) if report is not None else None
                self._phase = SessionPhase.COMPLETED
                self.completed_at = utc_now_iso()
                self._save()
                logger.info("Session %s scored: overall=%s pass=%s", self.id, result.overall, result.passed)
                return result
        finally:
            self._in_flight.release()

    def _scoring_request(self) -> Dict[str, Any]:
        behavior = self._signals.to_dict()
        return {
            "job": {
                "title": self.job_title,
                "skillsRequired": list(self.skills_required),
                "thresholds": {"overall": config.PASS_THRESHOLD_OVERALL},
            },
            "resume": self.resume.to_dict(),
            "transcript": [{"speaker": t.speaker.value, "text": t.text} for t in self._transcript],
            "behavior": behavior,
            "weights": config.get_score_weights(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "jobTitle": self.job_title,
                "jobDescription": self.job_description,
                "skillsRequired": list(self.skills_required),
                "resume": self.resume.to_dict(),
                "transcript": [t.to_dict() for t in self._transcript],
                "behaviorSignals": self._signals.to_dict(),
                "maxDepth": self.max_depth,
                "phase": self._phase.value,
                "isComplete": self.is_complete,
                "score": self._score.to_dict() if self._score else None,
                "report": self._report,
                "currentQuestion": self._current_question.to_dict() if self._current_question else None,
                "wrapUpRequested": self._wrap_up_requested,
                "questionsExhausted": self._questions_exhausted,
                "hasMoreQuestions": self.has_more_questions,
                "createdAt": self.created_at,
                "completedAt": self.completed_at,
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **collaborators) -> "InterviewSession":
        """Rehydrate a session saved with to_dict(). A session saved mid-scoring comes back awaiting a question."""
        session = cls(
            job_description=data.get("jobDescription", ""),
            skills_required=data.get("skillsRequired") or [],
            resume=data.get("resume"),
            max_depth=int(data.get("maxDepth", 0)),
            job_title=data.get("jobTitle"),
            session_id=data["id"],
            **collaborators,
        )
        session.created_at = data.get("createdAt") or session.created_at
        session.completed_at = data.get("completedAt")
        session._transcript = [TranscriptEntry.from_dict(t) for t in data.get("transcript") or []]
        session._signals = BehaviorSignals.from_dict(data.get("behaviorSignals"))
        if data.get("currentQuestion"):
            session._current_question = GeneratedQuestion.from_dict(data["currentQuestion"])
        session._wrap_up_requested = bool(data.get("wrapUpRequested", False))
        session._questions_exhausted = bool(data.get("questionsExhausted", False))
        if data.get("score"):
            session._score = ScoreResult.from_dict(data["score"])
        if data.get("report"):
            session._report = dict(data["report"])
        phase = SessionPhase(data.get("phase", SessionPhase.AWAITING_QUESTION.value))
        if phase is SessionPhase.SCORING:
            phase = SessionPhase.AWAITING_QUESTION
        if session._score is not None:
            phase = SessionPhase.COMPLETED
        session._phase = phase
        return session

    def save(self, store=None) -> None:
        target = store or self.store
        if target is None:
            raise ValueError("No session store attached")
        target.save(self.id, self.to_dict())

    def _save(self) -> None:
        if self.store is not None:
            self.store.save(self.id, self.to_dict())

    @classmethod
    def load(cls, store, session_id: str, **collaborators) -> Optional["InterviewSession"]:
        """Load a session from store; None when the id is unknown."""
        data = store.load(session_id)
        if data is None:
            return None
        return cls.from_dict(data, store=store, **collaborators)
