"""
Scheduler exception hierarchy.

Insufficient data is never an error: detectors and rankers degrade to low
confidence instead of raising. Everything here signals a bug upstream, a data
integrity problem, or a failing collaborator.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class InvalidInputError(SchedulerError, ValueError):
    """A malformed rating, cue level, latency or mode reached the core."""


class MissingReferenceDataError(SchedulerError, LookupError):
    """An outcome or response references an unknown object or component."""


class PersistenceError(SchedulerError):
    """
    The record store failed; nothing from the current unit of work was committed.

    When raised while processing a response, ``evaluation`` holds the grading
    that was computed before the store failed, so callers can still show it.
    """

    def __init__(self, message: str, evaluation=None):
        super().__init__(message)
        self.evaluation = evaluation
