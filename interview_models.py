"""
Interview data model.

Value types shared by the session controller, the prompt-flow services and
the HTTP layer: resume, transcript entries, behavior signals, generated
questions and score results. Every type round-trips through a camelCase
JSON-compatible dict (to_dict / from_dict) for the session store and the API.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

QUESTION_CATEGORIES = ("experience", "skill", "behavioral", "culture-add", "project-deep-dive")
DEFAULT_QUESTION_CATEGORY = "experience"


class InterviewError(Exception):
    """Base class for interview session errors."""


class InvalidTransitionError(InterviewError):
    """Operation not allowed in the session's current phase (caller bug)."""


class SessionBusyError(InterviewError):
    """Another question/scoring call for this session is already in flight."""


class ExternalServiceError(InterviewError):
    """Question generation or scoring failed; the session is unchanged and the call may be retried."""


class Speaker(Enum):
    AGENT = "agent"
    CANDIDATE = "candidate"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _str_list(values: Any) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        return [values]
    return [str(v) for v in values]


@dataclass(frozen=True)
class ExperienceEntry:
    title: str = ""
    company: str = ""
    bullets: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "company": self.company, "bullets": list(self.bullets)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperienceEntry":
        data = data or {}
        return cls(
            title=str(data.get("title") or ""),
            company=str(data.get("company") or ""),
            bullets=tuple(_str_list(data.get("bullets"))),
        )


@dataclass(frozen=True)
class Resume:
    """Candidate resume; immutable once the session is created."""
    summary: str = ""
    skills: tuple = ()
    experience: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "skills": list(self.skills),
            "experience": [e.to_dict() for e in self.experience],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Resume":
        data = data or {}
        return cls(
            summary=str(data.get("summary") or ""),
            skills=tuple(_str_list(data.get("skills"))),
            experience=tuple(ExperienceEntry.from_dict(e) for e in (data.get("experience") or []) if isinstance(e, dict)),
        )


@dataclass(frozen=True)
class TranscriptEntry:
    speaker: Speaker
    text: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"speaker": self.speaker.value, "text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            speaker=Speaker(data["speaker"]),
            text=str(data.get("text") or ""),
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )


# camelCase wire name for each BehaviorSignals field
_SIGNAL_WIRE_NAMES = {
    "attention_score_avg": "attentionScoreAvg",
    "speaking_ratio": "speakingRatio",
    "looking_away_pct_avg": "lookingAwayPctAvg",
    "pauses_count": "pausesCount",
    "blink_rate_per_min": "blinkRatePerMin",
    "head_stability": "headStability",
    "lean": "lean",
    "fidget_score": "fidgetScore",
    "behavior_score": "behaviorScore",
    "duration_sec": "duration",
}
_SIGNAL_FIELD_NAMES = {wire: name for name, wire in _SIGNAL_WIRE_NAMES.items()}


@dataclass
class BehaviorSignals:
    """
    Latest behavior signals for a session (last write wins per field).

    The first four are always present; the rest are filled once frames have
    been aggregated and are forwarded to scoring when set.
    """
    attention_score_avg: float = 0.0
    speaking_ratio: float = 0.0
    looking_away_pct_avg: float = 0.0
    pauses_count: int = 0
    blink_rate_per_min: Optional[float] = None
    head_stability: Optional[float] = None
    lean: Optional[str] = None
    fidget_score: Optional[float] = None
    behavior_score: Optional[float] = None
    duration_sec: Optional[float] = None

    @staticmethod
    def field_name(key: str) -> str:
        """
        Resolve a snake_case or camelCase key to a field name.

        Raises:
            ValueError: If the key names no field
        """
        if key in _SIGNAL_WIRE_NAMES:
            return key
        if key in _SIGNAL_FIELD_NAMES:
            return _SIGNAL_FIELD_NAMES[key]
        raise ValueError("Unknown behavior signal: %s" % key)

    def merged(self, partial: Dict[str, Any]) -> "BehaviorSignals":
        """Return a copy with the given fields overwritten (shallow merge)."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in partial.items():
            name = self.field_name(key)
            if value is None:
                values[name] = None
            elif name == "lean":
                values[name] = str(value)
            elif name == "pauses_count":
                values[name] = int(value)
            else:
                values[name] = float(value)
        return BehaviorSignals(**values)

    def to_dict(self, include_unset: bool = False) -> Dict[str, Any]:
        out = {}
        for name, wire in _SIGNAL_WIRE_NAMES.items():
            value = getattr(self, name)
            if value is None and not include_unset:
                continue
            out[wire] = value
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BehaviorSignals":
        return cls().merged(data or {})


@dataclass(frozen=True)
class GeneratedQuestion:
    question: str
    category: str = DEFAULT_QUESTION_CATEGORY
    followup_hints: tuple = ()
    should_wrap_up: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "category": self.category,
            "followupHints": list(self.followup_hints),
            "shouldWrapUp": self.should_wrap_up,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedQuestion":
        category = str(data.get("category") or DEFAULT_QUESTION_CATEGORY).strip().lower()
        if category not in QUESTION_CATEGORIES:
            category = DEFAULT_QUESTION_CATEGORY
        return cls(
            question=str(data.get("question") or "").strip(),
            category=category,
            followup_hints=tuple(_str_list(data.get("followupHints"))),
            should_wrap_up=bool(data.get("shouldWrapUp", False)),
        )


def _score(value: Any) -> float:
    return max(0.0, min(100.0, float(value or 0.0)))


@dataclass(frozen=True)
class ScoreResult:
    interview_score: float
    resume_score: float
    behavior_score: float
    overall: float
    passed: bool
    summary: str = ""
    skill_highlights: tuple = ()
    concerns: tuple = ()
    red_flags: tuple = ()
    bias_flagged: bool = False
    bias_notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interviewScore": self.interview_score,
            "resumeScore": self.resume_score,
            "behaviorScore": self.behavior_score,
            "overall": self.overall,
            "pass": self.passed,
            "summary": self.summary,
            "skillHighlights": list(self.skill_highlights),
            "concerns": list(self.concerns),
            "redFlags": list(self.red_flags),
            "biasCheck": {"flagged": self.bias_flagged, "notes": self.bias_notes},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], threshold: Optional[float] = None) -> "ScoreResult":
        """
        Build from a scoring payload.

        When threshold is given, pass is recomputed as overall >= threshold
        instead of trusting the payload's own verdict.

        Raises:
            ValueError: If the overall score is missing or not numeric
        """
        if data.get("overall") is None:
            raise ValueError("Score result has no overall score")
        overall = _score(data.get("overall"))
        bias = data.get("biasCheck") or {}
        passed = bool(data.get("pass", False)) if threshold is None else overall >= float(threshold)
        return cls(
            interview_score=_score(data.get("interviewScore")),
            resume_score=_score(data.get("resumeScore")),
            behavior_score=_score(data.get("behaviorScore")),
            overall=overall,
            passed=passed,
            summary=str(data.get("summary") or ""),
            skill_highlights=tuple(_str_list(data.get("skillHighlights"))),
            concerns=tuple(_str_list(data.get("concerns"))),
            red_flags=tuple(_str_list(data.get("redFlags"))),
            bias_flagged=bool(bias.get("flagged", False)),
            bias_notes=str(bias.get("notes") or ""),
        )
