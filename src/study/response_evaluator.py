"""
Response Evaluator.

Turns a raw learner response into (correct, credit, rating, feedback).

Tiers after normalization:
- exact match: correct, credit 1.0, rating Easy (fast) or Good
- similarity >= 0.90: correct, credit 0.95, rating Hard
- 0.70 <= similarity < 0.90: incorrect, credit = similarity, rating Again
- below 0.70: incorrect, credit 0, rating Again

similarity = 1 - levenshtein(a, b) / max(len(a), len(b))
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from src.core.models import validate_latency
from src.learning.decay_model import Rating

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

WRONG_WORD_EXPLANATION = "This is not the expected answer."


def normalize_response(text: str) -> str:
    """Casefold, trim, strip punctuation and collapse whitespace."""
    text = text.casefold().strip()
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1]."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1 - Levenshtein.distance(a, b) / max(len(a), len(b))


def classify_error_subtype(response: str, expected: str) -> tuple[str, str]:
    """
    Classify an incorrect response.

    Returns:
        (subtype, explanation) with subtype in spelling | typo | wrong_word
    """
    if len(response) == len(expected):
        differences = sum(1 for r, e in zip(response, expected) if r != e)
        if differences <= 2:
            return "spelling", "Letter order or spelling error."

    if abs(len(response) - len(expected)) <= 2:
        return "typo", "Missing or extra letters."

    return "wrong_word", WRONG_WORD_EXPLANATION


@dataclass
class EvaluationResult:
    """Outcome of evaluating one response."""

    correct: bool
    credit: float
    rating: Rating
    feedback: str
    similarity: float
    error_subtype: str | None = None
    correction: str | None = None
    explanation: str | None = None


class ResponseEvaluator:
    """Grades free-text responses against an expected answer."""

    CORRECT_THRESHOLD = 0.90
    PARTIAL_THRESHOLD = 0.70
    FAST_RESPONSE_MS = 5000
    NEAR_MISS_CREDIT = 0.95

    def __init__(
        self,
        correct_threshold: float | None = None,
        partial_threshold: float | None = None,
        fast_response_ms: float | None = None,
        near_miss_credit: float | None = None,
    ):
        self.correct_threshold = (
            self.CORRECT_THRESHOLD if correct_threshold is None else correct_threshold
        )
        self.partial_threshold = (
            self.PARTIAL_THRESHOLD if partial_threshold is None else partial_threshold
        )
        self.fast_response_ms = self.FAST_RESPONSE_MS if fast_response_ms is None else fast_response_ms
        self.near_miss_credit = self.NEAR_MISS_CREDIT if near_miss_credit is None else near_miss_credit

    @classmethod
    def from_settings(cls, settings) -> ResponseEvaluator:
        """Build an evaluator from the EvaluatorSettings config section."""
        return cls(
            correct_threshold=settings.correct_threshold,
            partial_threshold=settings.partial_threshold,
            fast_response_ms=settings.fast_response_ms,
            near_miss_credit=settings.near_miss_credit,
        )

    def evaluate(self, response: str, expected: str, latency_ms: float) -> EvaluationResult:
        """
        Evaluate a response.

        Args:
            response: Raw learner input
            expected: Canonical answer (the object's content)
            latency_ms: Response latency, must be non-negative

        Raises:
            InvalidInputError: On negative latency
        """
        validate_latency(latency_ms)
        given = normalize_response(response)
        target = normalize_response(expected)

        if given == target:
            return EvaluationResult(
                correct=True,
                credit=1.0,
                rating=Rating.EASY if latency_ms <= self.fast_response_ms else Rating.GOOD,
                feedback="Correct!",
                similarity=1.0,
            )

        score = similarity(given, target)

        if score >= self.correct_threshold:
            return EvaluationResult(
                correct=True,
                credit=self.near_miss_credit,
                rating=Rating.HARD,
                feedback="Almost perfect! Minor spelling variation.",
                similarity=score,
                correction=expected,
            )

        subtype, _ = classify_error_subtype(given, target)

        if score >= self.partial_threshold:
            return EvaluationResult(
                correct=False,
                credit=score,
                rating=Rating.AGAIN,
                feedback="Close, but not quite right.",
                similarity=score,
                error_subtype=subtype,
                correction=expected,
                explanation=f'Expected: "{expected}"',
            )

        return EvaluationResult(
            correct=False,
            credit=0.0,
            rating=Rating.AGAIN,
            feedback="Incorrect.",
            similarity=score,
            error_subtype="wrong_word",
            correction=expected,
            explanation=WRONG_WORD_EXPLANATION,
        )
