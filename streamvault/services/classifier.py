"""Content safety classification.

The executor only sees :class:`ContentClassifier`. A scorer turns a content
sample into a number in [0, 100]; the classifier applies the policy
threshold. Scorers may be as clever as they like, but they must return the
same score for the same sample.
"""

import base64
import hashlib
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from streamvault.core.config import settings
from streamvault.core.errors import ClassificationUnavailable
from streamvault.models import SafetyVerdict

logger = structlog.get_logger()


@dataclass(frozen=True)
class ContentSample:
    """Analysis input: sampled frames plus what the probe learned about the media."""

    frames: tuple[bytes, ...]
    content_type: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Scorer(Protocol):
    def score(self, sample: ContentSample) -> float: ...


class ContentClassifier(Protocol):
    def classify(self, sample: ContentSample) -> tuple[float, SafetyVerdict]: ...


def derive_verdict(score: float, threshold: float) -> SafetyVerdict:
    """Scores at or above the threshold are flagged."""
    return SafetyVerdict.FLAGGED if score >= threshold else SafetyVerdict.SAFE


class DigestScorer:
    """Deterministic stand-in scorer derived from a SHA-256 of the sample frames."""

    def score(self, sample: ContentSample) -> float:
        digest = hashlib.sha256()
        for frame in sample.frames:
            digest.update(frame)
        return round(int.from_bytes(digest.digest()[:4], "big") % 10001 / 100, 2)


class RemoteScorer:
    """Scores samples with an external model over HTTP.

    Expects the endpoint to answer ``{"score": <float>}``.
    """

    def __init__(self, url: str, timeout: float | None = None, client: httpx.Client | None = None) -> None:
        self.url = url
        self.client = client or httpx.Client(timeout=timeout or settings.classifier_timeout)

    def score(self, sample: ContentSample) -> float:
        body = {
            "content_type": sample.content_type,
            "metadata": sample.metadata,
            "frames": [base64.b64encode(frame).decode("ascii") for frame in sample.frames],
        }
        try:
            response = self.client.post(self.url, json=body)
            response.raise_for_status()
            return float(response.json()["score"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error("remote_scorer_failed", url=self.url, error=str(e))
            raise ClassificationUnavailable(f"Classifier request failed: {e}") from e


class ThresholdClassifier:
    def __init__(self, scorer: Scorer, threshold: float | None = None) -> None:
        self.scorer = scorer
        self.threshold = settings.classification_threshold if threshold is None else threshold

    def classify(self, sample: ContentSample) -> tuple[float, SafetyVerdict]:
        score = self.scorer.score(sample)
        if not 0 <= score <= 100:
            raise ClassificationUnavailable(f"Score out of range: {score}")
        return score, derive_verdict(score, self.threshold)


def get_classifier() -> ContentClassifier:
    if settings.classifier_url:
        return ThresholdClassifier(RemoteScorer(settings.classifier_url))
    return ThresholdClassifier(DigestScorer())
