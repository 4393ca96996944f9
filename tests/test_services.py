"""
Service tests: Foundry client wrapper, question/scoring prompt flows,
impression classifiers and session stores. All external calls are mocked.
"""

import sys
import os
import json
import tempfile
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import requests


def _completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestExtractJsonObject(unittest.TestCase):
    """Parsing model replies."""

    def test_bare_object(self):
        from services.azure_foundry import extract_json_object
        self.assertEqual(extract_json_object('{"question": "Why?"}'), {"question": "Why?"})

    def test_fenced_block(self):
        from services.azure_foundry import extract_json_object
        text = 'Here you go:\n```json\n{"overall": 72}\n```'
        self.assertEqual(extract_json_object(text), {"overall": 72})

    def test_object_embedded_in_prose(self):
        from services.azure_foundry import extract_json_object
        self.assertEqual(extract_json_object('Sure! {"a": 1} Hope that helps.'), {"a": 1})

    def test_non_object_rejected(self):
        from services.azure_foundry import extract_json_object
        for text in ("", "   ", "[1, 2]", "no json here"):
            with self.assertRaises(ValueError):
                extract_json_object(text)


class TestAzureFoundryService(unittest.TestCase):
    """Chat completion wrapper."""

    def test_unconfigured_client_raises(self):
        from services.azure_foundry import AzureFoundryService
        service = AzureFoundryService()
        service.endpoint = ""
        service.api_key = ""
        with self.assertRaises(ValueError):
            service.chat_completion([{"role": "user", "content": "hi"}])

    def test_json_mode_request(self):
        """complete_json prepends the system prompt and asks for a JSON object."""
        from services.azure_foundry import AzureFoundryService
        service = AzureFoundryService()
        service._client = MagicMock()
        service._client.chat.completions.create.return_value = _completion('{"ok": true}')

        result = service.complete_json("system rules", "user text", max_tokens=50, temperature=0.3)

        self.assertEqual(result, {"ok": True})
        kwargs = service._client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "system rules"})
        self.assertEqual(kwargs["messages"][1]["content"], "user text")
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["max_tokens"], 50)
        self.assertEqual(kwargs["temperature"], 0.3)

    def test_existing_system_message_is_kept(self):
        from services.azure_foundry import AzureFoundryService
        service = AzureFoundryService()
        service._client = MagicMock()
        service._client.chat.completions.create.return_value = _completion("plain")
        out = service.chat_completion(
            [{"role": "system", "content": "mine"}, {"role": "user", "content": "q"}],
            system_prompt="ignored",
        )
        self.assertEqual(out, "plain")
        messages = service._client.chat.completions.create.call_args.kwargs["messages"]
        self.assertEqual(len(messages), 2)
        self.assertEqual(messages[0]["content"], "mine")


class TestQuestionGenerator(unittest.TestCase):
    """Question prompt flow."""

    REQUEST = {
        "jobDescription": "Run payment services.",
        "skillsRequired": ["python", "postgres"],
        "resume": {"summary": "Backend engineer", "skills": ["python"], "experience": []},
        "transcriptSoFar": [{"speaker": "agent", "text": "Hi?"}, {"speaker": "candidate", "text": "Hello."}],
        "previousSignals": {"attentionScoreAvg": 81.0},
        "maxDepth": 5,
    }

    def test_generates_question(self):
        from services.question_generator import QuestionGenerator
        foundry = MagicMock()
        foundry.complete_json.return_value = {
            "question": "How did you handle retries?",
            "category": "skill",
            "followupHints": ["idempotency"],
            "shouldWrapUp": False,
        }
        q = QuestionGenerator(foundry).generate(self.REQUEST)
        self.assertEqual(q.question, "How did you handle retries?")
        self.assertEqual(q.category, "skill")
        self.assertEqual(q.followup_hints, ("idempotency",))

        user_message = foundry.complete_json.call_args[0][1]
        self.assertIn("python, postgres", user_message)
        self.assertIn("candidate: Hello.", user_message)
        self.assertIn("Questions asked so far: 1 of at most 5", user_message)
        self.assertIn("attentionScoreAvg", user_message)

    def test_empty_question_ends_interview(self):
        from services.question_generator import QuestionGenerator
        foundry = MagicMock()
        foundry.complete_json.return_value = {"question": None}
        self.assertIsNone(QuestionGenerator(foundry).generate(self.REQUEST))

    def test_transport_errors_propagate(self):
        from services.question_generator import QuestionGenerator
        foundry = MagicMock()
        foundry.complete_json.side_effect = ValueError("Model response is not a JSON object")
        with self.assertRaises(ValueError):
            QuestionGenerator(foundry).generate(self.REQUEST)


class TestInterviewScorer(unittest.TestCase):
    """Scoring prompt flow."""

    REQUEST = {
        "job": {"title": "Backend Engineer", "skillsRequired": ["python"], "thresholds": {"overall": 70}},
        "resume": {"summary": "", "skills": ["python"], "experience": []},
        "transcript": [{"speaker": "agent", "text": "Q"}, {"speaker": "candidate", "text": "A"}],
        "behavior": {"attentionScoreAvg": 75.0},
        "weights": {"interview": 0.6, "resume": 0.2, "behavior": 0.2},
    }

    def test_pass_follows_threshold_not_model(self):
        """A model claiming pass at overall 64 is overruled by the 70 threshold."""
        from services.interview_scorer import InterviewScorer
        foundry = MagicMock()
        foundry.complete_json.return_value = {
            "interviewScore": 60, "resumeScore": 70, "behaviorScore": 75, "overall": 64,
            "pass": True, "summary": "Borderline.", "skillHighlights": ["python"],
            "concerns": [], "redFlags": [], "biasCheck": {"flagged": False, "notes": ""},
        }
        with patch("services.interview_scorer.logger") as mock_logger:
            result = InterviewScorer(foundry).score(self.REQUEST)
        self.assertFalse(result.passed)
        self.assertEqual(result.overall, 64.0)
        self.assertEqual(result.skill_highlights, ("python",))
        mock_logger.warning.assert_called_once()

    def test_request_is_rendered(self):
        from services.interview_scorer import InterviewScorer
        foundry = MagicMock()
        foundry.complete_json.return_value = {"overall": 90, "pass": True}
        result = InterviewScorer(foundry).score(self.REQUEST)
        self.assertTrue(result.passed)
        user_message = foundry.complete_json.call_args[0][1]
        self.assertIn("Job title: Backend Engineer", user_message)
        self.assertIn("Pass threshold (overall): 70", user_message)
        self.assertIn('"interview": 0.6', user_message)

    def test_missing_overall_is_an_error(self):
        from services.interview_scorer import InterviewScorer
        foundry = MagicMock()
        foundry.complete_json.return_value = {"summary": "oops"}
        with self.assertRaises(ValueError):
            InterviewScorer(foundry).score(self.REQUEST)


class TestImpressionClassifiers(unittest.TestCase):
    """Hosted and simulated classifiers."""

    def test_parse_single_label_response(self):
        from services.impression_classifier import parse_classification_response
        result = parse_classification_response({
            "top": "engaged",
            "confidence": 0.83,
            "predictions": [{"class": "engaged", "confidence": 0.83}, {"class": "tired", "confidence": 0.1}],
        }, 1234.0)
        self.assertEqual(result.top_class, "engaged")
        self.assertEqual(result.confidence, 0.83)
        self.assertEqual(result.all_class_probabilities["tired"], 0.1)
        self.assertEqual(result.timestamp_ms, 1234.0)

    def test_parse_multi_label_response(self):
        """Without an explicit top, the highest prediction wins."""
        from services.impression_classifier import parse_classification_response
        result = parse_classification_response({
            "predictions": {"professional": {"confidence": 0.4}, "confident": {"confidence": 0.9}},
        }, 0.0)
        self.assertEqual(result.top_class, "confident")
        self.assertEqual(result.confidence, 0.9)

    def test_parse_empty_response(self):
        from services.impression_classifier import parse_classification_response
        self.assertIsNone(parse_classification_response({"predictions": []}, 0.0))

    def test_roboflow_posts_base64_body(self):
        import base64
        from services.impression_classifier import RoboflowImpressionClassifier
        session = MagicMock()
        session.post.return_value.json.return_value = {"top": "professional", "confidence": 0.9, "predictions": []}
        classifier = RoboflowImpressionClassifier(
            endpoint="https://classify.example.test/interview-impressions/3",
            api_key="test-key",
            confidence=0.5,
            timeout=2.0,
            session=session,
        )
        result = classifier.classify(b"\xff\xd8jpeg-bytes", timestamp_ms=10.0)

        self.assertEqual(result.top_class, "professional")
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "https://classify.example.test/interview-impressions/3")
        self.assertEqual(kwargs["data"], base64.b64encode(b"\xff\xd8jpeg-bytes").decode("ascii"))
        self.assertEqual(kwargs["params"], {"api_key": "test-key", "confidence": 0.5})
        self.assertEqual(kwargs["timeout"], 2.0)

    def test_roboflow_failure_returns_none(self):
        from services.impression_classifier import RoboflowImpressionClassifier
        session = MagicMock()
        session.post.side_effect = requests.exceptions.Timeout("read timed out")
        classifier = RoboflowImpressionClassifier(endpoint="https://x.test/m/1", api_key="k", session=session)
        self.assertIsNone(classifier.classify(b"jpeg"))

    def test_roboflow_bad_json_returns_none(self):
        from services.impression_classifier import RoboflowImpressionClassifier
        session = MagicMock()
        session.post.return_value.json.side_effect = ValueError("not json")
        classifier = RoboflowImpressionClassifier(endpoint="https://x.test/m/1", api_key="k", session=session)
        self.assertIsNone(classifier.classify(b"jpeg"))

    def test_roboflow_requires_endpoint(self):
        from services.impression_classifier import build_impression_classifier
        with patch("config.CLASSIFIER_ENDPOINT", ""):
            with self.assertRaises(ValueError):
                build_impression_classifier("roboflow")

    def test_simulated_is_deterministic(self):
        """The same seed gives the same sequence."""
        from services.impression_classifier import SimulatedImpressionClassifier
        a = SimulatedImpressionClassifier(seed=42)
        b = SimulatedImpressionClassifier(seed=42)
        seq_a = [a.classify(b"", timestamp_ms=i) for i in range(5)]
        seq_b = [b.classify(b"", timestamp_ms=i) for i in range(5)]
        self.assertEqual([r.to_dict() for r in seq_a], [r.to_dict() for r in seq_b])
        for r in seq_a:
            self.assertGreaterEqual(r.confidence, 0.6)
            self.assertLessEqual(r.confidence, 0.9)
            self.assertEqual(r.all_class_probabilities[r.top_class], r.confidence)

    def test_unknown_mode_rejected(self):
        from services.impression_classifier import build_impression_classifier
        with self.assertRaises(ValueError):
            build_impression_classifier("magic")

    def test_auto_mode_without_credentials_is_simulated(self):
        import config
        with patch("config.CLASSIFIER_MODE", "auto"), patch("config.CLASSIFIER_ENDPOINT", ""):
            self.assertEqual(config.resolve_classifier_mode(), "simulated")


class TestSessionStores(unittest.TestCase):
    """In-memory and JSON file stores."""

    DATA = {"id": "interview-abc", "transcript": [{"speaker": "agent", "text": "Hi"}], "maxDepth": 3}

    def test_memory_store_copies_values(self):
        from services.session_store import InMemorySessionStore
        store = InMemorySessionStore()
        data = json.loads(json.dumps(self.DATA))
        store.save("interview-abc", data)
        data["maxDepth"] = 99
        self.assertEqual(store.load("interview-abc")["maxDepth"], 3)
        self.assertTrue(store.exists("interview-abc"))
        self.assertEqual(store.list_ids(), ["interview-abc"])
        self.assertIsNone(store.load("interview-zzz"))

    def test_file_store_round_trip(self):
        from services.session_store import JsonFileSessionStore
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileSessionStore(tmp)
            store.save("interview-abc", self.DATA)
            self.assertTrue(os.path.isfile(os.path.join(tmp, "interview-abc.json")))
            self.assertEqual(JsonFileSessionStore(tmp).load("interview-abc"), self.DATA)
            self.assertEqual(store.list_ids(), ["interview-abc"])
            self.assertEqual([n for n in os.listdir(tmp) if n.endswith(".tmp")], [])

    def test_file_store_unserializable_value_leaves_no_temp_file(self):
        """A json.dump failure keeps the previous document and cleans up."""
        from services.session_store import JsonFileSessionStore
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileSessionStore(tmp)
            store.save("interview-abc", self.DATA)
            with self.assertRaises(TypeError):
                store.save("interview-abc", {"when": object()})
            self.assertEqual([n for n in os.listdir(tmp) if n.endswith(".tmp")], [])
            self.assertEqual(store.load("interview-abc"), self.DATA)

    def test_file_store_rejects_path_ids(self):
        from services.session_store import JsonFileSessionStore
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileSessionStore(tmp)
            with self.assertRaises(ValueError):
                store.save("../escape", self.DATA)
            self.assertIsNone(store.load("../escape"))

    def test_unknown_store_kind(self):
        from services.session_store import build_session_store
        with self.assertRaises(ValueError):
            build_session_store("redis")


if __name__ == "__main__":
    unittest.main()
