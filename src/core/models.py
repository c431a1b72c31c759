"""
Core domain models for the scheduler.

These dataclasses are the canonical in-process representation shared by the
decay model, mastery state machine, bottleneck detector, priority ranker and
response evaluator. Persistence lives in src.db; everything here is plain data
with dict round-trip helpers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.core.components import ComponentType
from src.core.exceptions import InvalidInputError

if TYPE_CHECKING:
    from src.adaptive.bottleneck_detector import BottleneckAnalysis

MAX_STAGE = 4
MAX_CUE_LEVEL = 3


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way out)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def validate_cue_level(cue_level: int) -> int:
    """Reject cue levels outside 0-3."""
    if isinstance(cue_level, bool) or not isinstance(cue_level, int):
        raise InvalidInputError(f"Cue level must be an int in 0..{MAX_CUE_LEVEL}, got {cue_level!r}")
    if not 0 <= cue_level <= MAX_CUE_LEVEL:
        raise InvalidInputError(f"Cue level must be in 0..{MAX_CUE_LEVEL}, got {cue_level}")
    return cue_level


def validate_latency(latency_ms: float) -> float:
    """Reject negative latencies."""
    if latency_ms is None or latency_ms < 0:
        raise InvalidInputError(f"Response latency must be >= 0 ms, got {latency_ms!r}")
    return latency_ms


class SessionMode(str, Enum):
    """
    Session mode of a learning interaction.

    Only the ability tracker is gated by the mode; mastery and decay always
    update.
    """

    LEARNING = "learning"  # Scaffolded, ability frozen
    TRAINING = "training"  # Half-weight ability update
    EVALUATION = "evaluation"  # Full-weight ability update

    @classmethod
    def parse(cls, value: str | SessionMode) -> SessionMode:
        if isinstance(value, SessionMode):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as e:
            raise InvalidInputError(f"Unknown session mode: {value!r}") from e

    @property
    def ability_weight(self) -> float:
        return {
            SessionMode.LEARNING: 0.0,
            SessionMode.TRAINING: 0.5,
            SessionMode.EVALUATION: 1.0,
        }[self]


@dataclass(frozen=True)
class ObjectValueVector:
    """Learner-independent value of a language object, each dimension in [0, 1]."""

    frequency: float = 0.5
    relational_density: float = 0.5
    domain_relevance: float = 0.5
    morphological_complexity: float = 0.5
    phonological_difficulty: float = 0.5

    def __post_init__(self):
        for name, value in self.to_dict().items():
            if not 0.0 <= value <= 1.0:
                raise InvalidInputError(f"{name} must be normalized to [0, 1], got {value}")

    def to_dict(self) -> dict[str, float]:
        return {
            "frequency": self.frequency,
            "relational_density": self.relational_density,
            "domain_relevance": self.domain_relevance,
            "morphological_complexity": self.morphological_complexity,
            "phonological_difficulty": self.phonological_difficulty,
        }


@dataclass(frozen=True)
class LanguageObject:
    """Immutable reference data for one learnable unit."""

    object_id: str
    content: str
    component: ComponentType
    values: ObjectValueVector = field(default_factory=ObjectValueVector)
    irt_difficulty: float = 0.0  # Logit scale, roughly -3..+3
    irt_discrimination: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "component", ComponentType.parse(self.component))

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_id": self.object_id,
            "content": self.content,
            "component": self.component.value,
            "values": self.values.to_dict(),
            "irt_difficulty": self.irt_difficulty,
            "irt_discrimination": self.irt_discrimination,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LanguageObject:
        return cls(
            object_id=data["object_id"],
            content=data["content"],
            component=ComponentType.parse(data["component"]),
            values=ObjectValueVector(**data.get("values", {})),
            irt_difficulty=data.get("irt_difficulty", 0.0),
            irt_discrimination=data.get("irt_discrimination", 1.0),
        )


@dataclass
class MasteryState:
    """
    Mastery and memory state for one learner x object pair.

    Created on first exposure, mutated after every response, never deleted
    while the pair exists.
    """

    learner_id: str
    object_id: str
    stage: int = 0
    cue_free_accuracy: float = 0.0
    cue_assisted_accuracy: float = 0.0
    exposure_count: int = 0

    # Decay model
    decay_difficulty: float = 5.0
    decay_stability: float = 0.0
    last_review_at: datetime | None = None
    repetitions: int = 0
    lapses: int = 0
    next_review_at: datetime | None = None

    # Cache, not ground truth
    cached_priority: float | None = None

    @property
    def scaffolding_gap(self) -> float:
        """Cue-assisted minus cue-free accuracy; always derived, never stored."""
        return self.cue_assisted_accuracy - self.cue_free_accuracy

    @property
    def is_new(self) -> bool:
        return self.repetitions == 0 and self.last_review_at is None

    def is_due(self, now: datetime | None = None) -> bool:
        if self.next_review_at is None:
            return True
        return ensure_utc(self.next_review_at) <= (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "object_id": self.object_id,
            "stage": self.stage,
            "cue_free_accuracy": self.cue_free_accuracy,
            "cue_assisted_accuracy": self.cue_assisted_accuracy,
            "exposure_count": self.exposure_count,
            "decay_difficulty": self.decay_difficulty,
            "decay_stability": self.decay_stability,
            "last_review_at": _iso(self.last_review_at),
            "repetitions": self.repetitions,
            "lapses": self.lapses,
            "next_review_at": _iso(self.next_review_at),
            "cached_priority": self.cached_priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MasteryState:
        return cls(
            learner_id=data["learner_id"],
            object_id=data["object_id"],
            stage=int(data.get("stage", 0)),
            cue_free_accuracy=float(data.get("cue_free_accuracy", 0.0)),
            cue_assisted_accuracy=float(data.get("cue_assisted_accuracy", 0.0)),
            exposure_count=int(data.get("exposure_count", 0)),
            decay_difficulty=float(data.get("decay_difficulty", 5.0)),
            decay_stability=float(data.get("decay_stability", 0.0)),
            last_review_at=_parse_dt(data.get("last_review_at")),
            repetitions=int(data.get("repetitions", 0)),
            lapses=int(data.get("lapses", 0)),
            next_review_at=_parse_dt(data.get("next_review_at")),
            cached_priority=data.get("cached_priority"),
        )


@dataclass(frozen=True)
class OutcomeRecord:
    """One evaluated response. Append-only; the sole source for error statistics."""

    learner_id: str
    object_id: str
    component: ComponentType
    correct: bool
    latency_ms: float
    cue_level: int
    session_id: str
    timestamp: datetime
    scope_id: str | None = None
    record_id: int | None = None

    def __post_init__(self):
        object.__setattr__(self, "component", ComponentType.parse(self.component))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        validate_cue_level(self.cue_level)
        validate_latency(self.latency_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "object_id": self.object_id,
            "component": self.component.value,
            "correct": self.correct,
            "latency_ms": self.latency_ms,
            "cue_level": self.cue_level,
            "session_id": self.session_id,
            "timestamp": _iso(self.timestamp),
            "scope_id": self.scope_id,
            "record_id": self.record_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutcomeRecord:
        return cls(
            learner_id=data["learner_id"],
            object_id=data["object_id"],
            component=ComponentType.parse(data["component"]),
            correct=bool(data["correct"]),
            latency_ms=data["latency_ms"],
            cue_level=data["cue_level"],
            session_id=data["session_id"],
            timestamp=_parse_dt(data["timestamp"]),
            scope_id=data.get("scope_id"),
            record_id=data.get("record_id"),
        )


@dataclass
class ComponentErrorStats:
    """Materialized error statistics for one learner x component x optional scope."""

    learner_id: str
    component: ComponentType
    scope_id: str | None = None
    total_responses: int = 0
    total_errors: int = 0
    recent_errors: int = 0
    error_rate: float = 0.0
    trend: float = 0.0  # Positive = worsening
    recommendation: str | None = None
    is_bottleneck: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "component": self.component.value,
            "scope_id": self.scope_id,
            "total_responses": self.total_responses,
            "total_errors": self.total_errors,
            "recent_errors": self.recent_errors,
            "error_rate": self.error_rate,
            "trend": self.trend,
            "recommendation": self.recommendation,
            "is_bottleneck": self.is_bottleneck,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComponentErrorStats:
        return cls(
            learner_id=data["learner_id"],
            component=ComponentType.parse(data["component"]),
            scope_id=data.get("scope_id"),
            total_responses=int(data.get("total_responses", 0)),
            total_errors=int(data.get("total_errors", 0)),
            recent_errors=int(data.get("recent_errors", 0)),
            error_rate=float(data.get("error_rate", 0.0)),
            trend=float(data.get("trend", 0.0)),
            recommendation=data.get("recommendation"),
            is_bottleneck=bool(data.get("is_bottleneck", False)),
        )


@dataclass
class LearnerAbility:
    """Per-learner ability estimates (IRT theta), global and per component."""

    learner_id: str
    global_theta: float = 0.0
    component_theta: dict[ComponentType, float] = field(
        default_factory=lambda: {c: 0.0 for c in ComponentType}
    )

    def theta_for(self, component: ComponentType) -> float:
        return self.component_theta.get(component, self.global_theta)

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "global_theta": self.global_theta,
            "component_theta": {c.value: v for c, v in self.component_theta.items()},
        }


@dataclass(frozen=True)
class ResponsePayload:
    """A single response as delivered by the presentation layer."""

    object_id: str
    raw_response: str
    response_latency_ms: float
    cue_level_used: int
    session_id: str
    session_mode: SessionMode = SessionMode.TRAINING

    def __post_init__(self):
        validate_cue_level(self.cue_level_used)
        validate_latency(self.response_latency_ms)
        object.__setattr__(self, "session_mode", SessionMode.parse(self.session_mode))


@dataclass
class QueueItem:
    """One entry of the review queue with its effective priority breakdown."""

    object_id: str
    component: ComponentType
    effective_priority: float
    base_value: float
    mastery_adjustment: float
    urgency: float
    bottleneck_boost: float
    stage: int = 0
    is_new: bool = True
    is_due: bool = True
    recommended_cue_level: int = 2  # Moderate for unseen items

    @property
    def is_bottleneck(self) -> bool:
        return self.bottleneck_boost > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_id": self.object_id,
            "component": self.component.value,
            "effective_priority": self.effective_priority,
            "base_value": self.base_value,
            "mastery_adjustment": self.mastery_adjustment,
            "urgency": self.urgency,
            "bottleneck_boost": self.bottleneck_boost,
            "stage": self.stage,
            "is_new": self.is_new,
            "is_due": self.is_due,
            "recommended_cue_level": self.recommended_cue_level,
        }


@dataclass
class ResponseFeedback:
    """Everything the presentation layer needs after one response."""

    correct: bool
    credit: float
    feedback_text: str
    new_stage: int
    stage_changed: bool
    next_review_at: datetime | None
    previous_stage: int = 0
    rating: int | None = None
    error_subtype: str | None = None
    correction: str | None = None
    updated_bottleneck: BottleneckAnalysis | None = None
    next_queue_item: QueueItem | None = None
    recommended_cue_level: int | None = None

    @property
    def promoted(self) -> bool:
        return self.stage_changed and self.new_stage > self.previous_stage

    @property
    def demoted(self) -> bool:
        return self.stage_changed and self.new_stage < self.previous_stage
