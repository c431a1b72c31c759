"""
Mastery State Machine.

Five ordered stages per language object:

    0 Unknown -> 1 Recognition -> 2 Recall -> 3 Controlled -> 4 Automatic

Stages are driven by two accuracy estimates kept as exponential moving
averages: cue-free accuracy (answers given without any scaffolding cue) and
cue-assisted accuracy. Their difference, the scaffolding gap, measures how
much the learner still relies on hints. It gates entry to (and exit from) the
Automatic stage and drives the cue-level selector, which closes the loop:
scaffolding is withdrawn as the gap shrinks.

A stage moves by at most one level per evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

from loguru import logger

from src.core.exceptions import InvalidInputError
from src.core.models import MAX_STAGE, MasteryState, validate_cue_level


class MasteryStage(IntEnum):
    """Mastery stages, ordered."""

    UNKNOWN = 0
    RECOGNITION = 1
    RECALL = 2
    CONTROLLED = 3
    AUTOMATIC = 4

    @property
    def display_name(self) -> str:
        return self.name.title()


class CueLevel(IntEnum):
    """Scaffolding shown to the learner."""

    NONE = 0
    MINIMAL = 1
    MODERATE = 2
    FULL = 3


@dataclass
class StageThresholds:
    """
    Transition thresholds on cue-free accuracy.

    promote[i] is the accuracy needed to move from stage i to i+1.
    demote[i] is the accuracy below which stage i+1 falls back to stage i.
    """

    promote: tuple[float, float, float, float] = (0.50, 0.60, 0.75, 0.90)
    demote: tuple[float, float, float, float] = (0.30, 0.40, 0.60, 0.80)
    controlled_min_stability: float = 7.0  # Days, required for 2 -> 3
    automatic_min_stability: float = 30.0  # Days, required for 3 -> 4
    automatic_max_gap: float = 0.10  # Scaffolding gap ceiling at stage 4
    smoothing_alpha: float = 0.2

    @classmethod
    def from_settings(cls, settings) -> StageThresholds:
        """Build thresholds from the MasterySettings config section."""
        return cls(
            promote=tuple(settings.promote),
            demote=tuple(settings.demote),
            controlled_min_stability=settings.controlled_min_stability,
            automatic_min_stability=settings.automatic_min_stability,
            automatic_max_gap=settings.automatic_max_gap,
            smoothing_alpha=settings.smoothing_alpha,
        )


@dataclass
class StageTransition:
    """Outcome of one stage evaluation."""

    previous_stage: int
    new_stage: int

    @property
    def changed(self) -> bool:
        return self.new_stage != self.previous_stage

    @property
    def direction(self) -> int:
        """+1 promotion, -1 demotion, 0 unchanged."""
        return (self.new_stage > self.previous_stage) - (self.new_stage < self.previous_stage)


def ema(old_avg: float, outcome: float, alpha: float) -> float:
    """Exponential moving average step."""
    return old_avg * (1 - alpha) + outcome * alpha


def scaffolding_gap(state: MasteryState) -> float:
    """Cue-assisted minus cue-free accuracy (may be negative; divergence is diagnostic)."""
    return state.cue_assisted_accuracy - state.cue_free_accuracy


class MasteryStateMachine:
    """
    Drives per-object mastery stages from accuracy and stability.

    Usage:
        machine = MasteryStateMachine()
        state = machine.record_response(state, correct=True, cue_level=0)
        state, transition = machine.transition(state)
    """

    def __init__(self, thresholds: StageThresholds | None = None):
        self.thresholds = thresholds or StageThresholds()

    # =========================================================================
    # Accuracy tracking
    # =========================================================================

    def record_response(self, state: MasteryState, correct: bool, cue_level: int) -> MasteryState:
        """
        Fold one response into the accuracy averages.

        Exactly one average moves: cue-free when cue_level is 0, cue-assisted
        otherwise. Exposure count always increments.
        """
        validate_cue_level(cue_level)
        outcome = 1.0 if correct else 0.0
        alpha = self.thresholds.smoothing_alpha

        if cue_level == CueLevel.NONE:
            return replace(
                state,
                cue_free_accuracy=ema(state.cue_free_accuracy, outcome, alpha),
                exposure_count=state.exposure_count + 1,
            )
        return replace(
            state,
            cue_assisted_accuracy=ema(state.cue_assisted_accuracy, outcome, alpha),
            exposure_count=state.exposure_count + 1,
        )

    # =========================================================================
    # Stage transitions
    # =========================================================================

    def can_promote(self, state: MasteryState) -> bool:
        """Check whether the state qualifies for the next stage."""
        stage = state.stage
        if stage >= MAX_STAGE:
            return False

        t = self.thresholds
        if state.cue_free_accuracy < t.promote[stage]:
            return False
        if stage == MasteryStage.RECALL:
            return state.decay_stability > t.controlled_min_stability
        if stage == MasteryStage.CONTROLLED:
            return (
                state.decay_stability > t.automatic_min_stability
                and scaffolding_gap(state) < t.automatic_max_gap
            )
        return True

    def should_demote(self, state: MasteryState) -> bool:
        """Check whether stale mastery should fall back one stage."""
        stage = state.stage
        if stage <= 0:
            return False

        t = self.thresholds
        if state.cue_free_accuracy < t.demote[stage - 1]:
            return True
        return stage == MasteryStage.AUTOMATIC and scaffolding_gap(state) >= t.automatic_max_gap

    def next_stage(self, state: MasteryState) -> int:
        """Stage after one evaluation; never moves by more than one level."""
        if not 0 <= state.stage <= MAX_STAGE:
            raise InvalidInputError(f"Stage must be in 0..{MAX_STAGE}, got {state.stage}")
        if self.can_promote(state):
            return state.stage + 1
        if self.should_demote(state):
            return state.stage - 1
        return state.stage

    def transition(self, state: MasteryState) -> tuple[MasteryState, StageTransition]:
        """Evaluate and apply one stage transition."""
        new_stage = self.next_stage(state)
        result = StageTransition(previous_stage=state.stage, new_stage=new_stage)

        if result.changed:
            logger.debug(
                f"Stage {'promotion' if result.direction > 0 else 'demotion'} for "
                f"{state.object_id}: {MasteryStage(state.stage).display_name} -> "
                f"{MasteryStage(new_stage).display_name}"
            )

        return replace(state, stage=new_stage), result

    # =========================================================================
    # Cue selection
    # =========================================================================

    @staticmethod
    def select_cue_level(state: MasteryState) -> CueLevel:
        """
        Pick scaffolding for the next presentation.

        More scaffolding while the gap is wide; cues are withdrawn once the
        learner performs as well without them.
        """
        gap = scaffolding_gap(state)
        exposures = state.exposure_count

        if gap < 0.10 and exposures > 3:
            return CueLevel.NONE
        if gap < 0.20 and exposures > 2:
            return CueLevel.MINIMAL
        if gap < 0.30:
            return CueLevel.MODERATE
        return CueLevel.FULL
