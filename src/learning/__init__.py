"""
Learning: per-object memory and mastery models.

- decay_model: stability/difficulty scheduler producing next review dates
- mastery_state_machine: five-stage mastery driven by cue-free accuracy
- ability_tracker: IRT-style theta updates gated by session mode
"""

from src.learning.ability_tracker import AbilityDelta, AbilityTracker, ability_delta
from src.learning.decay_model import (
    DecayParameters,
    DecayScheduler,
    DecayUpdate,
    Rating,
    retrievability,
)
from src.learning.mastery_state_machine import (
    CueLevel,
    MasteryStage,
    MasteryStateMachine,
    StageThresholds,
    StageTransition,
)

__all__ = [
    # Decay
    "DecayParameters",
    "DecayScheduler",
    "DecayUpdate",
    "Rating",
    "retrievability",
    # Mastery
    "CueLevel",
    "MasteryStage",
    "MasteryStateMachine",
    "StageThresholds",
    "StageTransition",
    # Ability
    "AbilityDelta",
    "AbilityTracker",
    "ability_delta",
]
