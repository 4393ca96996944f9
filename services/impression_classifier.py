"""
Impression classifier clients.

An impression classifier judges one webcam frame ("professional", "engaged",
"distracted", ...). Two implementations share ImpressionClassifier:

- RoboflowImpressionClassifier: hosted classification model over HTTP
  (base64 JPEG body, form-urlencoded, api_key/confidence query params).
- SimulatedImpressionClassifier: deterministic seeded sequence, no network.

The implementation is chosen once, at construction, by
build_impression_classifier(); nothing switches modes at runtime. classify()
returns None on any failure so callers degrade to last-known analytics.
"""

import base64
import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import requests

import config
from utils.behavior_combiner import ImpressionClassification

logger = logging.getLogger(__name__)

SIMULATED_CLASSES = ("professional", "engaged", "distracted", "tired", "confident", "nervous")


class ImpressionClassifier(ABC):
    """Per-frame impression classification."""

    @abstractmethod
    def classify(self, image_bytes: bytes, timestamp_ms: Optional[float] = None) -> Optional[ImpressionClassification]:
        """
        Classify one JPEG frame.

        Returns:
            ImpressionClassification, or None on failure/timeout
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass


def parse_classification_response(payload: Dict[str, Any], timestamp_ms: float) -> Optional[ImpressionClassification]:
    """
    Convert a hosted classification response to an ImpressionClassification.

    Accepts single-label responses ({"top", "confidence", "predictions": [{class, confidence}]})
    and multi-label ones ({"predictions": {class: {"confidence": ...}}}).
    """
    predictions = payload.get("predictions") or []
    probabilities: Dict[str, float] = {}
    if isinstance(predictions, dict):
        for name, value in predictions.items():
            conf = value.get("confidence", 0.0) if isinstance(value, dict) else value
            probabilities[str(name)] = float(conf or 0.0)
    else:
        for p in predictions:
            if isinstance(p, dict) and p.get("class") is not None:
                probabilities[str(p["class"])] = float(p.get("confidence") or 0.0)

    top = payload.get("top")
    confidence = payload.get("confidence")
    if not top and probabilities:
        top = max(probabilities, key=probabilities.get)
    if not top:
        return None
    if confidence is None:
        confidence = probabilities.get(top, 0.0)
    return ImpressionClassification(
        top_class=str(top),
        confidence=max(0.0, min(1.0, float(confidence))),
        all_class_probabilities=probabilities,
        timestamp_ms=timestamp_ms,
    )


class RoboflowImpressionClassifier(ImpressionClassifier):
    """Hosted classification endpoint (Roboflow-style HTTP API)."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        confidence: Optional[float] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = (endpoint if endpoint is not None else config.CLASSIFIER_ENDPOINT).strip()
        self.api_key = (api_key if api_key is not None else config.CLASSIFIER_API_KEY).strip()
        self.confidence = config.CLASSIFIER_CONFIDENCE if confidence is None else float(confidence)
        self.timeout = config.CLASSIFIER_TIMEOUT_SEC if timeout is None else float(timeout)
        self._session = session or requests.Session()
        if not self.endpoint:
            raise ValueError("Classifier endpoint is not configured (set CLASSIFIER_ENDPOINT)")

    def classify(self, image_bytes: bytes, timestamp_ms: Optional[float] = None) -> Optional[ImpressionClassification]:
        if timestamp_ms is None:
            timestamp_ms = time.time() * 1000.0
        if not image_bytes:
            return None
        body = base64.b64encode(image_bytes).decode("ascii")
        try:
            response = self._session.post(
                self.endpoint,
                params={"api_key": self.api_key, "confidence": self.confidence},
                data=body,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return parse_classification_response(response.json(), timestamp_ms)
        except requests.exceptions.RequestException as e:
            logger.warning("Impression classifier request failed: %s", e)
        except ValueError as e:
            logger.warning("Impression classifier returned an unreadable response: %s", e)
        return None

    def get_name(self) -> str:
        return "roboflow"


class SimulatedImpressionClassifier(ImpressionClassifier):
    """
    Deterministic stand-in for the hosted classifier.

    The same seed yields the same sequence of results; the image is ignored.
    """

    def __init__(self, seed: Optional[int] = None, classes: Sequence[str] = SIMULATED_CLASSES):
        self.seed = config.SIMULATED_CLASSIFIER_SEED if seed is None else int(seed)
        self.classes = tuple(classes)
        self._rng = random.Random(self.seed)

    def classify(self, image_bytes: bytes, timestamp_ms: Optional[float] = None) -> Optional[ImpressionClassification]:
        if timestamp_ms is None:
            timestamp_ms = time.time() * 1000.0
        top = self._rng.choice(self.classes)
        confidence = round(0.6 + self._rng.random() * 0.3, 4)
        probabilities = {
            cls: (confidence if cls == top else round(self._rng.random() * 0.4, 4))
            for cls in self.classes
        }
        return ImpressionClassification(
            top_class=top,
            confidence=confidence,
            all_class_probabilities=probabilities,
            timestamp_ms=timestamp_ms,
        )

    def get_name(self) -> str:
        return "simulated"


def build_impression_classifier(mode: Optional[str] = None) -> ImpressionClassifier:
    """
    Construct the classifier named by mode (default: config.resolve_classifier_mode()).

    Raises:
        ValueError: For an unknown mode or a roboflow mode without an endpoint
    """
    mode = (mode or config.resolve_classifier_mode()).strip().lower()
    if mode == "roboflow":
        return RoboflowImpressionClassifier()
    if mode == "simulated":
        return SimulatedImpressionClassifier()
    raise ValueError("Unknown classifier mode: %s" % mode)
