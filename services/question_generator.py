"""
Interview question generation.

Asks the Foundry model for the next first-round question given the job, the
resume, the transcript so far and the candidate's latest behavior signals.
The model replies with JSON:

    {"question": "...", "category": "experience|skill|behavioral|culture-add|project-deep-dive",
     "followupHints": ["..."], "shouldWrapUp": false}

An empty question (or {"question": null}) means the interview should end.
"""

import json
import logging
from typing import Any, Dict, Optional

import config
from interview_models import GeneratedQuestion, QUESTION_CATEGORIES
from services.azure_foundry import AzureFoundryService, get_foundry_service

logger = logging.getLogger(__name__)

QUESTION_SYSTEM_PROMPT = """You are Round1, running the first-round screen for a job opening.

Rules:
- Ask exactly one question per turn. Keep it short and specific to the job and the candidate's resume.
- Stay neutral. Never ask about age, family, health, religion, nationality, or any other protected characteristic.
- Build on the candidate's previous answers; press vague claims for concrete examples.
- Vary categories across the interview: """ + ", ".join(QUESTION_CATEGORIES) + """.
- If behavior signals suggest the candidate is disengaged, prefer an easier, more open question.
- Set shouldWrapUp to true on the final question you intend to ask, or when you already have enough signal.
- If no further question is useful, return an empty question string.

Reply with a JSON object only:
{"question": string, "category": string, "followupHints": [string], "shouldWrapUp": boolean}"""


def _format_request(request: Dict[str, Any]) -> str:
    """Render the collaborator request as the user message."""
    transcript = request.get("transcriptSoFar") or []
    asked = sum(1 for t in transcript if t.get("speaker") == "agent")
    lines = [
        "Job description:",
        request.get("jobDescription") or "(none)",
        "",
        "Skills required: " + (", ".join(request.get("skillsRequired") or []) or "(none)"),
        "",
        "Resume:",
        json.dumps(request.get("resume") or {}, indent=2),
        "",
        "Questions asked so far: %d of at most %d" % (asked, int(request.get("maxDepth") or 0)),
        "Transcript so far:",
    ]
    if transcript:
        lines.extend("%s: %s" % (t.get("speaker"), t.get("text")) for t in transcript)
    else:
        lines.append("(interview not started; open with a warm, job-relevant first question)")
    signals = request.get("previousSignals")
    if signals:
        lines.extend(["", "Latest behavior signals:", json.dumps(signals)])
    return "\n".join(lines)


class QuestionGenerator:
    """
    Question-generation collaborator backed by Azure AI Foundry.

    generate() raises on transport/parse failure; the session controller turns
    that into a recoverable session error.
    """

    def __init__(self, foundry: Optional[AzureFoundryService] = None):
        self._foundry = foundry

    @property
    def foundry(self) -> AzureFoundryService:
        return self._foundry or get_foundry_service()

    def generate(self, request: Dict[str, Any]) -> Optional[GeneratedQuestion]:
        """
        Generate the next question.

        Args:
            request: {jobDescription, skillsRequired, resume, transcriptSoFar,
                      previousSignals?, maxDepth}

        Returns:
            GeneratedQuestion, or None when the model has no further question
        """
        data = self.foundry.complete_json(
            QUESTION_SYSTEM_PROMPT,
            _format_request(request),
            max_tokens=400,
            temperature=config.QUESTION_TEMPERATURE,
        )
        question = GeneratedQuestion.from_dict(data)
        if not question.question:
            logger.info("Question generator returned no question; ending interview")
            return None
        return question


_question_generator: Optional[QuestionGenerator] = None


def get_question_generator() -> QuestionGenerator:
    """Return the shared question generator (lazy init)."""
    global _question_generator
    if _question_generator is None:
        _question_generator = QuestionGenerator()
    return _question_generator
