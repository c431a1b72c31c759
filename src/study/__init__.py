"""
Study Module.

Provides the response pipeline:
- ResponseEvaluator: grades free-text responses into credit and rating
- ScoringService: applies one response to mastery, decay, ability and queue
"""

from src.study.response_evaluator import EvaluationResult, ResponseEvaluator
from src.study.scoring_service import ScoringService, SessionSummary, summarize_outcomes

__all__ = [
    "EvaluationResult",
    "ResponseEvaluator",
    "ScoringService",
    "SessionSummary",
    "summarize_outcomes",
]
