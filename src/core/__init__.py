"""
Core Module - Shared domain models and interfaces.

This module contains the canonical implementations of concepts used by every
scheduler subsystem (learning, adaptive, study, db).

Components:
- components: Linguistic component hierarchy (ComponentType, CASCADE_ORDER)
- models: Domain records (LanguageObject, MasteryState, OutcomeRecord, ...)
- exceptions: Error taxonomy (InvalidInputError, MissingReferenceDataError, ...)

Design Principle:
Domain modules import from src/core/ rather than redefining shared records.
"""

from src.core.components import CASCADE_ORDER, ComponentType, is_component_type
from src.core.exceptions import (
    InvalidInputError,
    MissingReferenceDataError,
    PersistenceError,
    SchedulerError,
)
from src.core.models import (
    ComponentErrorStats,
    LanguageObject,
    LearnerAbility,
    MasteryState,
    ObjectValueVector,
    OutcomeRecord,
    QueueItem,
    ResponseFeedback,
    ResponsePayload,
    SessionMode,
    utc_now,
)

__all__ = [
    # Components
    "CASCADE_ORDER",
    "ComponentType",
    "is_component_type",
    # Models
    "ComponentErrorStats",
    "LanguageObject",
    "LearnerAbility",
    "MasteryState",
    "ObjectValueVector",
    "OutcomeRecord",
    "QueueItem",
    "ResponseFeedback",
    "ResponsePayload",
    "SessionMode",
    "utc_now",
    # Errors
    "InvalidInputError",
    "MissingReferenceDataError",
    "PersistenceError",
    "SchedulerError",
]
