"""
Scheduler repository.

Maps between the domain dataclasses in src.core.models and the SQLAlchemy
tables. Every public method runs in its own transaction; commit_outcome writes
the mastery state, the outcome record and the ability estimate of one response
as a single unit of work.

Store failures surface as PersistenceError.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.core.components import ComponentType
from src.core.exceptions import MissingReferenceDataError, PersistenceError
from src.core.models import (
    ComponentErrorStats,
    LanguageObject,
    LearnerAbility,
    MasteryState,
    ObjectValueVector,
    OutcomeRecord,
    QueueItem,
    ensure_utc,
    utc_now,
)
from src.db.database import SessionLocal, session_scope
from src.db.models import (
    DBComponentErrorStats,
    DBEffectivePriority,
    DBLanguageObject,
    DBLearnerAbility,
    DBMasteryState,
    DBOutcomeRecord,
)

# =============================================================================
# Row <-> domain mapping
# =============================================================================


def _to_language_object(row: DBLanguageObject) -> LanguageObject:
    return LanguageObject(
        object_id=row.object_id,
        content=row.content,
        component=ComponentType.parse(row.component),
        values=ObjectValueVector(
            frequency=row.frequency,
            relational_density=row.relational_density,
            domain_relevance=row.domain_relevance,
            morphological_complexity=row.morphological_complexity,
            phonological_difficulty=row.phonological_difficulty,
        ),
        irt_difficulty=row.irt_difficulty,
        irt_discrimination=row.irt_discrimination,
    )


def _to_mastery_state(row: DBMasteryState) -> MasteryState:
    return MasteryState(
        learner_id=row.learner_id,
        object_id=row.object_id,
        stage=row.stage,
        cue_free_accuracy=row.cue_free_accuracy,
        cue_assisted_accuracy=row.cue_assisted_accuracy,
        exposure_count=row.exposure_count,
        decay_difficulty=row.decay_difficulty,
        decay_stability=row.decay_stability,
        last_review_at=ensure_utc(row.last_review_at),
        repetitions=row.repetitions,
        lapses=row.lapses,
        next_review_at=ensure_utc(row.next_review_at),
        cached_priority=row.cached_priority,
    )


def _to_outcome(row: DBOutcomeRecord) -> OutcomeRecord:
    return OutcomeRecord(
        learner_id=row.learner_id,
        object_id=row.object_id,
        component=ComponentType.parse(row.component),
        correct=row.correct,
        latency_ms=row.latency_ms,
        cue_level=row.cue_level,
        session_id=row.session_id,
        timestamp=ensure_utc(row.recorded_at),
        scope_id=row.scope_id,
        record_id=row.id,
    )


def _to_component_stats(row: DBComponentErrorStats) -> ComponentErrorStats:
    return ComponentErrorStats(
        learner_id=row.learner_id,
        component=ComponentType.parse(row.component),
        scope_id=row.scope_id,
        total_responses=row.total_responses,
        total_errors=row.total_errors,
        recent_errors=row.recent_errors,
        error_rate=row.error_rate,
        trend=row.trend,
        recommendation=row.recommendation,
        is_bottleneck=row.is_bottleneck,
    )


def _to_ability(row: DBLearnerAbility) -> LearnerAbility:
    thetas = {c: 0.0 for c in ComponentType}
    for tag, value in (row.component_theta or {}).items():
        thetas[ComponentType.parse(tag)] = float(value)
    return LearnerAbility(learner_id=row.learner_id, global_theta=row.global_theta, component_theta=thetas)


class SchedulerRepository:
    """Read/write access to scheduler state."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        """
        Initialize the repository.

        Args:
            session_factory: Session factory (defaults to the configured database)
        """
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Record store failure: {e}")
            raise PersistenceError(str(e)) from e

    # =========================================================================
    # Language objects
    # =========================================================================

    def upsert_language_object(self, obj: LanguageObject) -> None:
        with self._transaction() as session:
            self._write_language_object(session, obj)

    def upsert_language_objects(self, objects: Iterable[LanguageObject]) -> int:
        count = 0
        with self._transaction() as session:
            for obj in objects:
                self._write_language_object(session, obj)
                count += 1
        logger.info(f"Stored {count} language objects")
        return count

    def get_language_object(self, object_id: str) -> LanguageObject:
        """
        Raises:
            MissingReferenceDataError: If the object is unknown
        """
        with self._transaction() as session:
            row = session.get(DBLanguageObject, object_id)
            if row is None:
                raise MissingReferenceDataError(f"Unknown language object: {object_id!r}")
            return _to_language_object(row)

    def list_language_objects(self) -> list[LanguageObject]:
        with self._transaction() as session:
            rows = session.scalars(select(DBLanguageObject).order_by(DBLanguageObject.object_id))
            return [_to_language_object(row) for row in rows]

    def get_catalog(self) -> dict[str, LanguageObject]:
        return {obj.object_id: obj for obj in self.list_language_objects()}

    # =========================================================================
    # Mastery states
    # =========================================================================

    def get_mastery_state(self, learner_id: str, object_id: str) -> MasteryState | None:
        with self._transaction() as session:
            row = session.get(DBMasteryState, (learner_id, object_id))
            return _to_mastery_state(row) if row else None

    def list_mastery_states(self, learner_id: str) -> dict[str, MasteryState]:
        with self._transaction() as session:
            rows = session.scalars(
                select(DBMasteryState).where(DBMasteryState.learner_id == learner_id)
            )
            return {row.object_id: _to_mastery_state(row) for row in rows}

    def upsert_mastery_state(self, state: MasteryState) -> None:
        with self._transaction() as session:
            self._write_mastery_state(session, state)

    # =========================================================================
    # Outcomes
    # =========================================================================

    def append_outcome(self, record: OutcomeRecord) -> OutcomeRecord:
        with self._transaction() as session:
            return self._write_outcome(session, record)

    def get_outcomes(
        self,
        learner_id: str,
        scope_id: str | None = None,
        since: datetime | None = None,
    ) -> list[OutcomeRecord]:
        """Outcome records of a learner, oldest first."""
        with self._transaction() as session:
            stmt = select(DBOutcomeRecord).where(DBOutcomeRecord.learner_id == learner_id)
            if scope_id is not None:
                stmt = stmt.where(DBOutcomeRecord.scope_id == scope_id)
            if since is not None:
                stmt = stmt.where(DBOutcomeRecord.recorded_at >= ensure_utc(since))
            stmt = stmt.order_by(DBOutcomeRecord.recorded_at, DBOutcomeRecord.id)
            return [_to_outcome(row) for row in session.scalars(stmt)]

    # =========================================================================
    # Abilities
    # =========================================================================

    def get_ability(self, learner_id: str) -> LearnerAbility:
        """Theta estimates; a learner without history starts at zero."""
        with self._transaction() as session:
            row = session.get(DBLearnerAbility, learner_id)
            return _to_ability(row) if row else LearnerAbility(learner_id=learner_id)

    def upsert_ability(self, ability: LearnerAbility) -> None:
        with self._transaction() as session:
            self._write_ability(session, ability)

    # =========================================================================
    # Unit of work
    # =========================================================================

    def commit_outcome(
        self,
        state: MasteryState,
        record: OutcomeRecord,
        ability: LearnerAbility | None = None,
    ) -> OutcomeRecord:
        """
        Persist the effects of one response atomically.

        Either the mastery state, the outcome record and the ability estimate
        are all written, or none of them is.
        """
        with self._transaction() as session:
            self._write_mastery_state(session, state)
            stored = self._write_outcome(session, record)
            if ability is not None:
                self._write_ability(session, ability)
            return stored

    # =========================================================================
    # Derived caches
    # =========================================================================

    def upsert_component_stats(self, stats: Iterable[ComponentErrorStats]) -> None:
        with self._transaction() as session:
            for stat in stats:
                stmt = select(DBComponentErrorStats).where(
                    DBComponentErrorStats.learner_id == stat.learner_id,
                    DBComponentErrorStats.component == stat.component.value,
                )
                if stat.scope_id is None:
                    stmt = stmt.where(DBComponentErrorStats.scope_id.is_(None))
                else:
                    stmt = stmt.where(DBComponentErrorStats.scope_id == stat.scope_id)

                row = session.scalars(stmt).first()
                if row is None:
                    row = DBComponentErrorStats(
                        learner_id=stat.learner_id,
                        component=stat.component.value,
                        scope_id=stat.scope_id,
                    )
                    session.add(row)

                row.total_responses = stat.total_responses
                row.total_errors = stat.total_errors
                row.recent_errors = stat.recent_errors
                row.error_rate = stat.error_rate
                row.trend = stat.trend
                row.recommendation = stat.recommendation
                row.is_bottleneck = stat.is_bottleneck

    def get_component_stats(
        self, learner_id: str, scope_id: str | None = None
    ) -> list[ComponentErrorStats]:
        with self._transaction() as session:
            stmt = select(DBComponentErrorStats).where(DBComponentErrorStats.learner_id == learner_id)
            if scope_id is None:
                stmt = stmt.where(DBComponentErrorStats.scope_id.is_(None))
            else:
                stmt = stmt.where(DBComponentErrorStats.scope_id == scope_id)
            stats = [_to_component_stats(row) for row in session.scalars(stmt)]
        stats.sort(key=lambda s: s.component.position)
        return stats

    def upsert_priority(self, learner_id: str, item: QueueItem, computed_at: datetime | None = None) -> None:
        self.upsert_priorities(learner_id, [item], computed_at)

    def upsert_priorities(
        self,
        learner_id: str,
        items: Iterable[QueueItem],
        computed_at: datetime | None = None,
    ) -> None:
        computed_at = ensure_utc(computed_at) or utc_now()
        with self._transaction() as session:
            for item in items:
                row = session.get(DBEffectivePriority, (learner_id, item.object_id))
                if row is None:
                    row = DBEffectivePriority(learner_id=learner_id, object_id=item.object_id)
                    session.add(row)
                row.effective_priority = item.effective_priority
                row.base_value = item.base_value
                row.mastery_adjustment = item.mastery_adjustment
                row.urgency = item.urgency
                row.bottleneck_boost = item.bottleneck_boost
                row.computed_at = computed_at

                state_row = session.get(DBMasteryState, (learner_id, item.object_id))
                if state_row is not None:
                    state_row.cached_priority = item.effective_priority

    # =========================================================================
    # Writers (caller owns the transaction)
    # =========================================================================

    @staticmethod
    def _write_language_object(session: Session, obj: LanguageObject) -> None:
        row = session.get(DBLanguageObject, obj.object_id)
        if row is None:
            row = DBLanguageObject(object_id=obj.object_id)
            session.add(row)
        row.content = obj.content
        row.component = obj.component.value
        row.frequency = obj.values.frequency
        row.relational_density = obj.values.relational_density
        row.domain_relevance = obj.values.domain_relevance
        row.morphological_complexity = obj.values.morphological_complexity
        row.phonological_difficulty = obj.values.phonological_difficulty
        row.irt_difficulty = obj.irt_difficulty
        row.irt_discrimination = obj.irt_discrimination

    @staticmethod
    def _write_mastery_state(session: Session, state: MasteryState) -> None:
        row = session.get(DBMasteryState, (state.learner_id, state.object_id))
        if row is None:
            row = DBMasteryState(learner_id=state.learner_id, object_id=state.object_id)
            session.add(row)
        row.stage = state.stage
        row.cue_free_accuracy = state.cue_free_accuracy
        row.cue_assisted_accuracy = state.cue_assisted_accuracy
        row.exposure_count = state.exposure_count
        row.decay_difficulty = state.decay_difficulty
        row.decay_stability = state.decay_stability
        row.last_review_at = state.last_review_at
        row.repetitions = state.repetitions
        row.lapses = state.lapses
        row.next_review_at = state.next_review_at
        row.cached_priority = state.cached_priority

    @staticmethod
    def _write_outcome(session: Session, record: OutcomeRecord) -> OutcomeRecord:
        row = DBOutcomeRecord(
            learner_id=record.learner_id,
            object_id=record.object_id,
            component=record.component.value,
            correct=record.correct,
            latency_ms=record.latency_ms,
            cue_level=record.cue_level,
            session_id=record.session_id,
            scope_id=record.scope_id,
            recorded_at=record.timestamp,
        )
        session.add(row)
        session.flush()
        return _to_outcome(row)

    @staticmethod
    def _write_ability(session: Session, ability: LearnerAbility) -> None:
        row = session.get(DBLearnerAbility, ability.learner_id)
        if row is None:
            row = DBLearnerAbility(learner_id=ability.learner_id)
            session.add(row)
        row.global_theta = ability.global_theta
        row.component_theta = {c.value: v for c, v in ability.component_theta.items()}
