"""
Interview session controller tests.

Covers the turn loop (depth limit, wrap-up, exhausted generator), message
rules, behavior-signal merging, one-time scoring, failure recovery, the
per-session busy guard, and save/load through a session store.
"""

import sys
import os
import threading
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


RESUME = {
    "summary": "Backend engineer, 6 years of Python services",
    "skills": ["python", "sql", "kubernetes"],
    "experience": [
        {"title": "Senior Engineer", "company": "Acme", "bullets": ["Built the billing API"]},
    ],
}


def _question(text="Tell me about the billing API.", wrap_up=False, category="project-deep-dive"):
    from interview_models import GeneratedQuestion
    return GeneratedQuestion(question=text, category=category, should_wrap_up=wrap_up)


def _score(overall=78.0):
    from interview_models import ScoreResult
    return ScoreResult(
        interview_score=80.0,
        resume_score=75.0,
        behavior_score=72.0,
        overall=overall,
        passed=overall >= 70,
        summary="Solid backend depth.",
    )


def _generator(*questions):
    gen = MagicMock()
    if questions:
        gen.generate.side_effect = list(questions)
    else:
        gen.generate.side_effect = lambda request: _question("Question %d?" % (len(request["transcriptSoFar"]) // 2 + 1))
    return gen


def _session(max_depth=3, generator=None, scorer=None, store=None):
    from interview_session import InterviewSession
    if scorer is None:
        scorer = MagicMock()
        scorer.score.return_value = _score()
    return InterviewSession(
        "Build and run payment services.",
        ["python", "postgres"],
        RESUME,
        max_depth=max_depth,
        question_generator=generator or _generator(),
        scorer=scorer,
        store=store,
    )


class TestTurnLoop(unittest.TestCase):
    """Question/answer loop."""

    def test_depth_limit_ends_loop(self):
        """maxDepth=3 with three answers gives 6 entries, then no more questions."""
        from interview_models import Speaker
        session = _session(max_depth=3)
        for i in range(3):
            q = session.generate_next_question()
            self.assertIsNotNone(q)
            self.assertTrue(session.add_message(Speaker.CANDIDATE, "Answer number %d." % i))
        self.assertEqual(len(session.transcript), 6)
        self.assertFalse(session.has_more_questions)
        self.assertIsNone(session.generate_next_question())
        self.assertEqual(session.question_generator.generate.call_count, 3)

    def test_transcript_alternates_speakers(self):
        from interview_models import Speaker
        session = _session(max_depth=2)
        session.generate_next_question()
        session.add_message("candidate", "I designed the ledger schema.")
        session.generate_next_question()
        session.add_message(Speaker.CANDIDATE, "We used idempotency keys.")
        speakers = [t.speaker for t in session.transcript]
        self.assertEqual(speakers, [Speaker.AGENT, Speaker.CANDIDATE, Speaker.AGENT, Speaker.CANDIDATE])

    def test_question_request_carries_context(self):
        """The request has the job, resume, transcript and, after the first turn, signals."""
        from interview_models import Speaker
        session = _session()
        session.generate_next_question()
        first = session.question_generator.generate.call_args_list[0][0][0]
        self.assertEqual(first["maxDepth"], 3)
        self.assertEqual(first["transcriptSoFar"], [])
        self.assertNotIn("previousSignals", first)
        self.assertEqual(first["resume"]["skills"], ["python", "sql", "kubernetes"])

        session.add_message(Speaker.CANDIDATE, "An answer.")
        session.generate_next_question()
        second = session.question_generator.generate.call_args_list[1][0][0]
        self.assertEqual(len(second["transcriptSoFar"]), 2)
        self.assertIn("previousSignals", second)

    def test_wrap_up_signal_ends_loop(self):
        """A question flagged should_wrap_up is the last one."""
        from interview_models import Speaker
        gen = _generator(_question("Final question?", wrap_up=True))
        session = _session(max_depth=5, generator=gen)
        self.assertTrue(session.generate_next_question().should_wrap_up)
        session.add_message(Speaker.CANDIDATE, "My closing answer.")
        self.assertIsNone(session.generate_next_question())
        self.assertEqual(gen.generate.call_count, 1)

    def test_generator_with_nothing_to_ask(self):
        """A None question ends the loop without appending."""
        gen = _generator(None)
        session = _session(generator=gen)
        self.assertIsNone(session.generate_next_question())
        self.assertEqual(session.transcript, [])
        self.assertFalse(session.has_more_questions)

    def test_unanswered_question_blocks_next(self):
        """Asking again before the candidate answers is an invalid transition."""
        from interview_models import InvalidTransitionError
        session = _session()
        session.generate_next_question()
        with self.assertRaises(InvalidTransitionError):
            session.generate_next_question()

    def test_generator_failure_leaves_session_unchanged(self):
        from interview_models import ExternalServiceError
        from interview_session import SessionPhase
        gen = MagicMock()
        gen.generate.side_effect = RuntimeError("endpoint down")
        session = _session(generator=gen)
        with self.assertRaises(ExternalServiceError):
            session.generate_next_question()
        self.assertEqual(session.transcript, [])
        self.assertIs(session.phase, SessionPhase.AWAITING_QUESTION)

    def test_negative_depth_rejected(self):
        with self.assertRaises(ValueError):
            _session(max_depth=-1)


class TestMessages(unittest.TestCase):
    """add_message rules."""

    def test_empty_candidate_answer_is_dropped(self):
        from interview_models import Speaker
        from interview_session import SessionPhase
        session = _session()
        session.generate_next_question()
        self.assertFalse(session.add_message(Speaker.CANDIDATE, "   "))
        self.assertEqual(len(session.transcript), 1)
        self.assertIs(session.phase, SessionPhase.AWAITING_ANSWER)

    def test_unknown_speaker_rejected(self):
        session = _session()
        with self.assertRaises(ValueError):
            session.add_message("interviewer", "hello")

    def test_speaking_ratio_is_candidate_word_share(self):
        from interview_models import Speaker
        session = _session()
        session.add_message(Speaker.AGENT, "one two three four")
        session.add_message(Speaker.CANDIDATE, "five six seven eight")
        self.assertEqual(session.behavior_signals.speaking_ratio, 50.0)

    def test_messages_after_completion_rejected(self):
        from interview_models import InvalidTransitionError, Speaker
        session = _session(max_depth=0)
        session.complete_interview()
        with self.assertRaises(InvalidTransitionError):
            session.add_message(Speaker.CANDIDATE, "late answer")


class TestBehaviorSignals(unittest.TestCase):
    """Signal merging."""

    def test_partial_update_merges(self):
        session = _session()
        session.update_behavior_signals({"attentionScoreAvg": 82.5})
        session.update_behavior_signals(looking_away_pct_avg=17.5)
        signals = session.behavior_signals
        self.assertEqual(signals.attention_score_avg, 82.5)
        self.assertEqual(signals.looking_away_pct_avg, 17.5)
        self.assertEqual(signals.pauses_count, 0)

    def test_unknown_signal_rejected(self):
        session = _session()
        with self.assertRaises(ValueError):
            session.update_behavior_signals({"heartRate": 80})

    def test_update_from_summary(self):
        """Eye contact feeds attention and looking-away; analytics mean feeds the behavior score."""
        from utils.signal_aggregator import Posture, SignalSummary
        from utils.behavior_combiner import CombinedAnalytics
        session = _session()
        summary = SignalSummary(80.0, 15.0, 0.0002, Posture.FORWARD, 0.01, 30.0)
        analytics = CombinedAnalytics(80.0, 90.0, 70.0, 60.0)
        signals = session.update_from_summary(summary, analytics)
        self.assertEqual(signals.attention_score_avg, 80.0)
        self.assertEqual(signals.looking_away_pct_avg, 20.0)
        self.assertEqual(signals.lean, "forward")
        self.assertEqual(signals.behavior_score, 75.0)
        self.assertEqual(signals.to_dict()["duration"], 30.0)

    def test_update_from_missing_summary_is_noop(self):
        session = _session()
        before = session.behavior_signals
        self.assertIs(session.update_from_summary(None), before)


class TestCompletion(unittest.TestCase):
    """complete_interview."""

    def test_zero_depth_completes_immediately(self):
        session = _session(max_depth=0)
        self.assertIsNone(session.generate_next_question())
        score = session.complete_interview()
        self.assertTrue(session.is_complete)
        self.assertEqual(score.overall, 78.0)

    def test_second_completion_returns_cached_score(self):
        """The scorer is called exactly once."""
        scorer = MagicMock()
        scorer.score.return_value = _score(65.0)
        session = _session(max_depth=0, scorer=scorer)
        first = session.complete_interview()
        second = session.complete_interview()
        self.assertIs(first, second)
        scorer.score.assert_called_once()

    def test_scoring_request_shape(self):
        from interview_models import Speaker
        scorer = MagicMock()
        scorer.score.return_value = _score()
        session = _session(max_depth=1, scorer=scorer)
        session.generate_next_question()
        session.add_message(Speaker.CANDIDATE, "I own the on-call rotation.")
        session.complete_interview()
        request = scorer.score.call_args[0][0]
        self.assertEqual(request["job"]["skillsRequired"], ["python", "postgres"])
        self.assertIn("overall", request["job"]["thresholds"])
        self.assertEqual(len(request["transcript"]), 2)
        self.assertIn("attentionScoreAvg", request["behavior"])
        self.assertAlmostEqual(sum(request["weights"].values()), 1.0)

    def test_scoring_failure_restores_phase(self):
        """A failed scoring call leaves the session incomplete and retryable."""
        from interview_models import ExternalServiceError
        from interview_session import SessionPhase
        scorer = MagicMock()
        scorer.score.side_effect = [RuntimeError("timeout"), _score()]
        session = _session(max_depth=0, scorer=scorer)
        with self.assertRaises(ExternalServiceError):
            session.complete_interview()
        self.assertFalse(session.is_complete)
        self.assertIs(session.phase, SessionPhase.AWAITING_QUESTION)
        self.assertIsNone(session.score)
        session.complete_interview()
        self.assertTrue(session.is_complete)

    def test_no_questions_after_completion(self):
        session = _session(max_depth=2)
        session.complete_interview()
        self.assertIsNone(session.generate_next_question())
        session.question_generator.generate.assert_not_called()

    def test_report_is_stored_once_with_the_score(self):
        """The report passed with the first successful scoring call is kept; later ones are ignored."""
        session = _session(max_depth=0)
        self.assertTrue(session.capture_open)
        session.complete_interview(report={"overallScore": 81})
        self.assertFalse(session.capture_open)
        session.complete_interview(report={"overallScore": 12})
        self.assertEqual(session.report, {"overallScore": 81})

    def test_failed_scoring_stores_no_report(self):
        from interview_models import ExternalServiceError
        scorer = MagicMock()
        scorer.score.side_effect = RuntimeError("timeout")
        session = _session(max_depth=0, scorer=scorer)
        with self.assertRaises(ExternalServiceError):
            session.complete_interview(report={"overallScore": 81})
        self.assertIsNone(session.report)
        self.assertTrue(session.capture_open)

    def test_signals_closed_after_completion(self):
        from interview_models import InvalidTransitionError
        session = _session(max_depth=0)
        session.complete_interview()
        with self.assertRaises(InvalidTransitionError):
            session.update_behavior_signals(attentionScoreAvg=10)


class TestBusyGuard(unittest.TestCase):
    """Only one external call per session at a time."""

    def test_concurrent_completion_is_rejected(self):
        from interview_models import SessionBusyError
        started = threading.Event()
        release = threading.Event()

        def slow_score(request):
            started.set()
            release.wait(5)
            return _score()

        scorer = MagicMock()
        scorer.score.side_effect = slow_score
        session = _session(max_depth=0, scorer=scorer)

        worker = threading.Thread(target=session.complete_interview)
        worker.start()
        try:
            self.assertTrue(started.wait(5))
            with self.assertRaises(SessionBusyError):
                session.complete_interview()
            with self.assertRaises(SessionBusyError):
                session.generate_next_question()
        finally:
            release.set()
            worker.join(5)
        self.assertTrue(session.is_complete)
        scorer.score.assert_called_once()


class TestPersistence(unittest.TestCase):
    """to_dict/from_dict and store save/load."""

    def test_round_trip_mid_interview(self):
        from interview_models import Speaker
        from interview_session import InterviewSession, SessionPhase
        session = _session()
        session.generate_next_question()
        session.add_message(Speaker.CANDIDATE, "We sharded by tenant.")
        session.update_behavior_signals(pausesCount=3)

        restored = InterviewSession.from_dict(session.to_dict(), question_generator=_generator())
        self.assertEqual(restored.id, session.id)
        self.assertEqual([t.text for t in restored.transcript], [t.text for t in session.transcript])
        self.assertEqual(restored.behavior_signals.pauses_count, 3)
        self.assertIs(restored.phase, SessionPhase.AWAITING_QUESTION)
        self.assertEqual(restored.resume.skills, ("python", "sql", "kubernetes"))

    def test_session_saved_while_scoring_comes_back_retryable(self):
        from interview_session import InterviewSession, SessionPhase
        data = _session().to_dict()
        data["phase"] = "scoring"
        restored = InterviewSession.from_dict(data)
        self.assertIs(restored.phase, SessionPhase.AWAITING_QUESTION)

    def test_store_receives_every_mutation(self):
        from interview_models import Speaker
        from interview_session import InterviewSession
        from services.session_store import InMemorySessionStore
        store = InMemorySessionStore()
        session = _session(max_depth=1, store=store)
        session.generate_next_question()
        session.add_message(Speaker.CANDIDATE, "Answer.")
        session.complete_interview()

        loaded = InterviewSession.load(store, session.id)
        self.assertTrue(loaded.is_complete)
        self.assertEqual(loaded.score.overall, 78.0)
        self.assertEqual(len(loaded.transcript), 2)

    def test_stored_report_round_trips(self):
        from interview_session import InterviewSession
        from services.session_store import InMemorySessionStore
        store = InMemorySessionStore()
        session = _session(max_depth=0, store=store)
        session.complete_interview(report={"overallScore": 70, "strengths": ["Steady eye contact"]})
        loaded = InterviewSession.load(store, session.id)
        self.assertEqual(loaded.report, {"overallScore": 70, "strengths": ["Steady eye contact"]})
        self.assertFalse(loaded.capture_open)

    def test_load_unknown_id(self):
        from interview_session import InterviewSession
        from services.session_store import InMemorySessionStore
        self.assertIsNone(InterviewSession.load(InMemorySessionStore(), "interview-missing"))

    def test_save_without_store(self):
        with self.assertRaises(ValueError):
            _session().save()


class TestModels(unittest.TestCase):
    """Value-type parsing."""

    def test_unknown_question_category_falls_back(self):
        from interview_models import GeneratedQuestion
        q = GeneratedQuestion.from_dict({"question": " Why us? ", "category": "trivia"})
        self.assertEqual(q.question, "Why us?")
        self.assertEqual(q.category, "experience")

    def test_score_pass_recomputed_from_threshold(self):
        from interview_models import ScoreResult
        result = ScoreResult.from_dict({"overall": 65, "pass": True}, threshold=70)
        self.assertFalse(result.passed)
        self.assertFalse(result.to_dict()["pass"])

    def test_score_values_are_clamped(self):
        from interview_models import ScoreResult
        result = ScoreResult.from_dict({"overall": 140, "interviewScore": -5})
        self.assertEqual(result.overall, 100.0)
        self.assertEqual(result.interview_score, 0.0)

    def test_score_without_overall_rejected(self):
        from interview_models import ScoreResult
        with self.assertRaises(ValueError):
            ScoreResult.from_dict({"interviewScore": 80})


if __name__ == "__main__":
    unittest.main()
