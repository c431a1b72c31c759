"""
Decay Model: stability/difficulty memory scheduler (FSRS-style).

Each language object carries two memory variables per learner:
- Stability (S): days until recall probability decays to ~90%
- Difficulty (D): intrinsic hardness, 1 (easy) to 10 (hard)

Rating Scale (derived by the response evaluator, never by the learner):
1 - Again: forgotten / wrong answer (lapse)
2 - Hard: correct with a near-miss
3 - Good: correct, normal effort
4 - Easy: correct and fast

Retrievability follows R(t) = e^(-t/S).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import IntEnum

from loguru import logger

from src.core.exceptions import InvalidInputError
from src.core.models import MasteryState, ensure_utc, utc_now, validate_latency


class Rating(IntEnum):
    """Outcome rating consumed by the decay model."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


def validate_rating(rating: int) -> Rating:
    """
    Validate an internally derived rating.

    Raises:
        InvalidInputError: For anything outside {1, 2, 3, 4}; never clamped
    """
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidInputError(f"Rating must be an int in 1..4, got {rating!r}")
    try:
        return Rating(rating)
    except ValueError as e:
        raise InvalidInputError(f"Rating must be in 1..4, got {rating}") from e


def retrievability(stability_days: float, elapsed_days: float) -> float:
    """
    Probability of recall after elapsed_days.

    Formula: R = e^(-t/S)
    """
    if stability_days <= 0:
        return 0.0
    return math.exp(-max(0.0, elapsed_days) / stability_days)


@dataclass
class DecayParameters:
    """Configuration for the decay model."""

    # Seed stability by first rating (Again, Hard, Good, Easy)
    initial_stability: tuple[float, float, float, float] = (0.4, 0.6, 2.4, 5.8)
    initial_difficulty: float = 5.0  # Neutral midpoint of [1, 10]

    lapse_factor: float = 0.2
    hard_factor: float = 1.5
    good_factor: float = 2.0
    easy_factor: float = 2.5

    lapse_difficulty_step: float = 0.2
    easy_difficulty_step: float = 0.1

    min_difficulty: float = 1.0
    max_difficulty: float = 10.0
    minimum_interval_days: float = 1.0
    maximum_interval_days: float = 36500  # 100 years

    @classmethod
    def from_settings(cls, settings) -> DecayParameters:
        """Build parameters from the DecaySettings config section."""
        return cls(
            initial_stability=tuple(settings.initial_stability),
            initial_difficulty=settings.initial_difficulty,
            lapse_factor=settings.lapse_factor,
            hard_factor=settings.hard_factor,
            good_factor=settings.good_factor,
            easy_factor=settings.easy_factor,
            lapse_difficulty_step=settings.lapse_difficulty_step,
            easy_difficulty_step=settings.easy_difficulty_step,
            maximum_interval_days=settings.maximum_interval_days,
        )


@dataclass
class DecayUpdate:
    """Result of scheduling one review."""

    rating: Rating
    difficulty: float
    stability: float
    interval_days: float
    next_review_at: datetime
    reviewed_at: datetime
    repetitions: int
    lapses: int
    first_review: bool


class DecayScheduler:
    """
    Memory scheduler producing the next review date from an outcome rating.

    Stability is shrunk on a lapse and grown multiplicatively on success;
    difficulty moves up on a lapse and down on an easy recall. The interval
    stretches for easy items and shrinks for hard ones:

        interval = S * (1 + (5 - D) / 10), floor 1 day
    """

    def __init__(self, params: DecayParameters | None = None):
        """
        Initialize the scheduler.

        Args:
            params: Custom parameters (uses defaults if None)
        """
        self.params = params or DecayParameters()

    def next_interval(self, stability: float, difficulty: float) -> float:
        """Days until the next review."""
        interval = stability * (1 + (5 - difficulty) / 10)
        return min(
            self.params.maximum_interval_days,
            max(self.params.minimum_interval_days, interval),
        )

    def retrievability(self, state: MasteryState, now: datetime | None = None) -> float:
        """Current recall probability for a state (0 if never reviewed)."""
        if state.last_review_at is None:
            return 0.0
        now = ensure_utc(now) or utc_now()
        elapsed = (now - ensure_utc(state.last_review_at)).total_seconds() / 86400
        return retrievability(state.decay_stability, elapsed)

    def schedule(
        self,
        state: MasteryState,
        rating: int,
        latency_ms: float,
        now: datetime | None = None,
    ) -> DecayUpdate:
        """
        Compute new difficulty, stability and next review for a rating.

        Args:
            state: Current mastery state (decay fields are read)
            rating: Outcome rating 1-4
            latency_ms: Response latency, must be non-negative
            now: Review timestamp (defaults to UTC now)

        Returns:
            DecayUpdate with the new memory variables

        Raises:
            InvalidInputError: On an invalid rating or negative latency
        """
        rating = validate_rating(rating)
        validate_latency(latency_ms)
        now = ensure_utc(now) or utc_now()
        p = self.params

        first_review = state.repetitions == 0 or state.last_review_at is None
        lapses = state.lapses

        if first_review:
            stability = p.initial_stability[rating - 1]
            difficulty = p.initial_difficulty
        else:
            stability = state.decay_stability
            difficulty = state.decay_difficulty

            if rating == Rating.AGAIN:
                stability *= p.lapse_factor
                difficulty += p.lapse_difficulty_step
                lapses += 1
            elif rating == Rating.HARD:
                stability *= p.hard_factor
            elif rating == Rating.GOOD:
                stability *= p.good_factor
            else:
                stability *= p.easy_factor
                difficulty -= p.easy_difficulty_step

            difficulty = min(p.max_difficulty, max(p.min_difficulty, difficulty))

        interval = self.next_interval(stability, difficulty)

        return DecayUpdate(
            rating=rating,
            difficulty=difficulty,
            stability=stability,
            interval_days=interval,
            next_review_at=now + timedelta(days=interval),
            reviewed_at=now,
            repetitions=state.repetitions + 1,
            lapses=lapses,
            first_review=first_review,
        )

    def apply(self, state: MasteryState, update: DecayUpdate) -> MasteryState:
        """Return a copy of state carrying the scheduled decay variables."""
        return replace(
            state,
            decay_difficulty=update.difficulty,
            decay_stability=update.stability,
            last_review_at=update.reviewed_at,
            next_review_at=update.next_review_at,
            repetitions=update.repetitions,
            lapses=update.lapses,
        )

    def review(
        self,
        state: MasteryState,
        rating: int,
        latency_ms: float,
        now: datetime | None = None,
    ) -> MasteryState:
        """Schedule and apply in one step."""
        update = self.schedule(state, rating, latency_ms, now)

        logger.debug(
            f"Decay update for {state.object_id}: rating={int(update.rating)}, "
            f"S={update.stability:.2f}, D={update.difficulty:.2f}, "
            f"interval={update.interval_days:.1f}d"
        )

        return self.apply(state, update)
