"""
Configuration settings for the logos-scheduler core.

Uses Pydantic Settings for environment variable management with .env file support.
Nested sections can be overridden with LOGOS_<SECTION>__<FIELD>, e.g.
LOGOS_PRIORITY__FREQUENCY=0.25.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PriorityWeights(BaseModel):
    """
    Weights of the effective priority formula.

    The five value-vector weights plus urgency and bottleneck must sum to 1.0.
    """

    frequency: float = Field(default=0.20, ge=0, description="F: corpus frequency")
    relational: float = Field(default=0.15, ge=0, description="R: relational density")
    domain: float = Field(default=0.15, ge=0, description="D: domain relevance")
    morphological: float = Field(default=0.10, ge=0, description="M: morphological complexity")
    phonological: float = Field(default=0.10, ge=0, description="P: phonological difficulty")
    urgency: float = Field(default=0.20, ge=0, description="Review urgency weight")
    bottleneck: float = Field(default=0.10, ge=0, description="Bottleneck boost")

    @model_validator(mode="after")
    def _check_sum(self) -> PriorityWeights:
        total = (
            self.frequency
            + self.relational
            + self.domain
            + self.morphological
            + self.phonological
            + self.urgency
            + self.bottleneck
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Priority weights must sum to 1.0 (got {total:.4f})")
        return self


class DecaySettings(BaseModel):
    """Decay model (memory scheduler) parameters."""

    initial_stability: tuple[float, float, float, float] = (0.4, 0.6, 2.4, 5.8)
    initial_difficulty: float = 5.0
    lapse_factor: float = 0.2
    hard_factor: float = 1.5
    good_factor: float = 2.0
    easy_factor: float = 2.5
    lapse_difficulty_step: float = 0.2
    easy_difficulty_step: float = 0.1
    maximum_interval_days: float = 36500


class MasterySettings(BaseModel):
    """Mastery state machine parameters."""

    smoothing_alpha: float = Field(default=0.2, gt=0, le=1)
    promote: tuple[float, float, float, float] = (0.50, 0.60, 0.75, 0.90)
    demote: tuple[float, float, float, float] = (0.30, 0.40, 0.60, 0.80)
    controlled_min_stability: float = 7.0
    automatic_min_stability: float = 30.0
    automatic_max_gap: float = 0.10


class BottleneckSettings(BaseModel):
    """Bottleneck detector parameters."""

    window_days: int = 14
    recent_window_days: int = 7
    min_responses: int = 20
    min_responses_per_component: int = 1
    error_rate_threshold: float = 0.30
    cascade_factor: float = 0.67
    cascade_confidence: float = 0.70


class EvaluatorSettings(BaseModel):
    """Response evaluator thresholds."""

    correct_threshold: float = 0.90
    partial_threshold: float = 0.70
    fast_response_ms: int = 5000
    near_miss_credit: float = 0.95


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LOGOS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///logos_scheduler.db",
        description="SQLAlchemy connection string for the record store",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="INFO",
        description="Log level for loguru sinks",
    )

    # ========================================
    # Algorithms
    # ========================================
    priority: PriorityWeights = Field(default_factory=PriorityWeights)
    decay: DecaySettings = Field(default_factory=DecaySettings)
    mastery: MasterySettings = Field(default_factory=MasterySettings)
    bottleneck: BottleneckSettings = Field(default_factory=BottleneckSettings)
    evaluator: EvaluatorSettings = Field(default_factory=EvaluatorSettings)
    irt_top_k: int = Field(
        default=0,
        ge=0,
        description="Queue items reordered by IRT information at the learner's theta (0 = off)",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
