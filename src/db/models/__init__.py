# SQLAlchemy models
from .base import Base
from .scheduler import (
    DBComponentErrorStats,
    DBEffectivePriority,
    DBLanguageObject,
    DBLearnerAbility,
    DBMasteryState,
    DBOutcomeRecord,
)

__all__ = [
    # Base
    "Base",
    # Reference data
    "DBLanguageObject",
    # Learner state
    "DBMasteryState",
    "DBOutcomeRecord",
    "DBLearnerAbility",
    # Derived caches
    "DBComponentErrorStats",
    "DBEffectivePriority",
]
