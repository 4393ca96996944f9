"""
Interview scoring.

Scores a finished interview against the job: interview content, resume match
and behavior, blended with the caller's weights. The model replies with JSON
matching ScoreResult.to_dict(); pass/fail is always recomputed here as
overall >= job.thresholds.overall so a model slip cannot flip the verdict.
"""

import json
import logging
from typing import Any, Dict, Optional

import config
from interview_models import ScoreResult
from services.azure_foundry import AzureFoundryService, get_foundry_service

logger = logging.getLogger(__name__)

SCORING_SYSTEM_PROMPT = """You are an impartial hiring assistant scoring a first-round interview.

Score only against the job's stated requirements, on a 0-100 scale:
- interviewScore: depth, correctness and relevance of the candidate's answers
- resumeScore: how well the resume matches the required skills
- behaviorScore: from the behavior signals (attention, looking away, posture, steadiness); treat them as weak evidence
- overall: interviewScore, resumeScore and behaviorScore combined with the given weights

List concrete skillHighlights, concerns and redFlags drawn from the transcript.
Run a bias check: set biasCheck.flagged if any part of your judgement leaned on a protected
characteristic or on anything unrelated to the job, and explain in biasCheck.notes.

Reply with a JSON object only:
{"interviewScore": number, "resumeScore": number, "behaviorScore": number, "overall": number,
 "pass": boolean, "summary": string, "skillHighlights": [string], "concerns": [string],
 "redFlags": [string], "biasCheck": {"flagged": boolean, "notes": string}}"""


def _format_request(request: Dict[str, Any]) -> str:
    job = request.get("job") or {}
    transcript = request.get("transcript") or []
    lines = [
        "Job title: %s" % (job.get("title") or ""),
        "Skills required: " + (", ".join(job.get("skillsRequired") or []) or "(none)"),
        "Pass threshold (overall): %s" % (job.get("thresholds") or {}).get("overall"),
        "",
        "Resume:",
        json.dumps(request.get("resume") or {}, indent=2),
        "",
        "Transcript:",
    ]
    if transcript:
        lines.extend("%s: %s" % (t.get("speaker"), t.get("text")) for t in transcript)
    else:
        lines.append("(empty)")
    lines.extend([
        "",
        "Behavior signals:",
        json.dumps(request.get("behavior") or {}),
        "",
        "Weights: %s" % json.dumps(request.get("weights") or {}),
    ])
    return "\n".join(lines)


class InterviewScorer:
    """Scoring collaborator backed by Azure AI Foundry."""

    def __init__(self, foundry: Optional[AzureFoundryService] = None):
        self._foundry = foundry

    @property
    def foundry(self) -> AzureFoundryService:
        return self._foundry or get_foundry_service()

    def score(self, request: Dict[str, Any]) -> ScoreResult:
        """
        Score an interview.

        Args:
            request: {job{title, skillsRequired, thresholds{overall}}, resume,
                      transcript, behavior, weights}

        Returns:
            ScoreResult

        Raises:
            ValueError: If the model reply is not a usable score
            openai.OpenAIError: If the API call fails or times out
        """
        data = self.foundry.complete_json(
            SCORING_SYSTEM_PROMPT,
            _format_request(request),
            max_tokens=900,
            temperature=config.SCORING_TEMPERATURE,
        )
        threshold = ((request.get("job") or {}).get("thresholds") or {}).get("overall", config.PASS_THRESHOLD_OVERALL)
        result = ScoreResult.from_dict(data, threshold=threshold)
        if bool(data.get("pass", result.passed)) != result.passed:
            logger.warning("Scoring model verdict disagreed with threshold %s; using overall=%s", threshold, result.overall)
        return result


_interview_scorer: Optional[InterviewScorer] = None


def get_interview_scorer() -> InterviewScorer:
    """Return the shared interview scorer (lazy init)."""
    global _interview_scorer
    if _interview_scorer is None:
        _interview_scorer = InterviewScorer()
    return _interview_scorer
