"""
Scheduler table models.

Ground truth:
- language_objects: immutable reference data per learnable unit
- mastery_states: learner x object mastery and decay variables
- outcome_records: append-only response log
- learner_abilities: theta estimates

Derived caches (always rebuildable from the tables above):
- component_error_stats: materialized per-component error statistics
- effective_priorities: last computed queue scores
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

# ========================================
# REFERENCE DATA
# ========================================


class DBLanguageObject(Base):
    """Learnable unit with its learner-independent value vector."""

    __tablename__ = "language_objects"

    object_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    component: Mapped[str] = mapped_column(String(8), nullable=False, index=True)

    # Value vector (0-1 each)
    frequency: Mapped[float] = mapped_column(Float, default=0.5)
    relational_density: Mapped[float] = mapped_column(Float, default=0.5)
    domain_relevance: Mapped[float] = mapped_column(Float, default=0.5)
    morphological_complexity: Mapped[float] = mapped_column(Float, default=0.5)
    phonological_difficulty: Mapped[float] = mapped_column(Float, default=0.5)

    # IRT item parameters
    irt_difficulty: Mapped[float] = mapped_column(Float, default=0.0)
    irt_discrimination: Mapped[float] = mapped_column(Float, default=1.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<DBLanguageObject {self.object_id} [{self.component}]>"


# ========================================
# LEARNER STATE
# ========================================


class DBMasteryState(Base):
    """Mastery stage, accuracy averages and decay variables per learner x object."""

    __tablename__ = "mastery_states"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    object_id: Mapped[str] = mapped_column(
        ForeignKey("language_objects.object_id", ondelete="CASCADE"), primary_key=True
    )

    stage: Mapped[int] = mapped_column(Integer, default=0)
    cue_free_accuracy: Mapped[float] = mapped_column(Float, default=0.0)
    cue_assisted_accuracy: Mapped[float] = mapped_column(Float, default=0.0)
    exposure_count: Mapped[int] = mapped_column(Integer, default=0)

    # Decay model
    decay_difficulty: Mapped[float] = mapped_column(Float, default=5.0)
    decay_stability: Mapped[float] = mapped_column(Float, default=0.0)
    last_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    repetitions: Mapped[int] = mapped_column(Integer, default=0)
    lapses: Mapped[int] = mapped_column(Integer, default=0)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    cached_priority: Mapped[float | None] = mapped_column(Float)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_mastery_due", "learner_id", "next_review_at"),)

    def __repr__(self) -> str:
        return f"<DBMasteryState learner={self.learner_id} object={self.object_id} stage={self.stage}>"


class DBOutcomeRecord(Base):
    """One evaluated response. Rows are never updated."""

    __tablename__ = "outcome_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    object_id: Mapped[str] = mapped_column(
        ForeignKey("language_objects.object_id", ondelete="CASCADE"), nullable=False
    )
    component: Mapped[str] = mapped_column(String(8), nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    latency_ms: Mapped[float] = mapped_column(Float, nullable=False)
    cue_level: Mapped[int] = mapped_column(Integer, default=0)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(128))
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_outcome_learner_time", "learner_id", "recorded_at"),
        Index("idx_outcome_session", "session_id"),
    )


class DBLearnerAbility(Base):
    """Theta estimates per learner; component thetas keyed by component tag."""

    __tablename__ = "learner_abilities"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    global_theta: Mapped[float] = mapped_column(Float, default=0.0)
    component_theta: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )


# ========================================
# DERIVED CACHES
# ========================================


class DBComponentErrorStats(Base):
    """Materialized error statistics per learner x component x scope."""

    __tablename__ = "component_error_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    component: Mapped[str] = mapped_column(String(8), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(128))

    total_responses: Mapped[int] = mapped_column(Integer, default=0)
    total_errors: Mapped[int] = mapped_column(Integer, default=0)
    recent_errors: Mapped[int] = mapped_column(Integer, default=0)
    error_rate: Mapped[float] = mapped_column(Float, default=0.0)
    trend: Mapped[float] = mapped_column(Float, default=0.0)
    recommendation: Mapped[str | None] = mapped_column(Text)
    is_bottleneck: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("learner_id", "component", "scope_id", name="uq_learner_component_scope"),
    )


class DBEffectivePriority(Base):
    """Last computed effective priority per learner x object."""

    __tablename__ = "effective_priorities"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    object_id: Mapped[str] = mapped_column(
        ForeignKey("language_objects.object_id", ondelete="CASCADE"), primary_key=True
    )

    effective_priority: Mapped[float] = mapped_column(Float, nullable=False)
    base_value: Mapped[float] = mapped_column(Float, default=0.0)
    mastery_adjustment: Mapped[float] = mapped_column(Float, default=1.0)
    urgency: Mapped[float] = mapped_column(Float, default=0.0)
    bottleneck_boost: Mapped[float] = mapped_column(Float, default=0.0)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_priority_rank", "learner_id", "effective_priority"),)
