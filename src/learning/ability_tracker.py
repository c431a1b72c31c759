"""
Ability tracker: IRT-style theta estimates per learner.

Each evaluated response contributes a signed delta: larger for discriminating
items of moderate difficulty. The object's component theta takes the full
delta and the global theta half of it. The session mode then scales the
whole update (learning freezes it, training halves it, evaluation applies it
in full).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from src.core.components import ComponentType
from src.core.models import LanguageObject, LearnerAbility, SessionMode


@dataclass
class AbilityDelta:
    """Unweighted theta contribution of one response."""

    global_delta: float = 0.0
    component_deltas: dict[ComponentType, float] = field(default_factory=dict)

    def scaled(self, weight: float) -> AbilityDelta:
        return AbilityDelta(
            global_delta=self.global_delta * weight,
            component_deltas={c: d * weight for c, d in self.component_deltas.items()},
        )

    @property
    def is_zero(self) -> bool:
        return self.global_delta == 0 and all(d == 0 for d in self.component_deltas.values())


def ability_delta(correct: bool, obj: LanguageObject, step: float = 0.1) -> AbilityDelta:
    """
    Theta contribution of a response to one object.

    magnitude = step * discrimination * (1 - |difficulty| / 3)
    """
    sign = 1.0 if correct else -1.0
    magnitude = step * obj.irt_discrimination * (1 - abs(obj.irt_difficulty) / 3)
    contribution = sign * magnitude

    return AbilityDelta(
        global_delta=contribution * 0.5,
        component_deltas={obj.component: contribution},
    )


class AbilityTracker:
    """Applies gated theta updates to a LearnerAbility."""

    def apply(
        self,
        ability: LearnerAbility,
        delta: AbilityDelta,
        mode: SessionMode | str,
    ) -> tuple[LearnerAbility, AbilityDelta]:
        """
        Apply a delta under the session-mode gate.

        Returns:
            (updated ability, delta actually applied)
        """
        mode = SessionMode.parse(mode)
        applied = delta.scaled(mode.ability_weight)

        if applied.is_zero:
            return ability, applied

        thetas = dict(ability.component_theta)
        for component, d in applied.component_deltas.items():
            thetas[component] = thetas.get(component, 0.0) + d

        updated = LearnerAbility(
            learner_id=ability.learner_id,
            global_theta=ability.global_theta + applied.global_delta,
            component_theta=thetas,
        )

        logger.debug(
            f"Ability update for {ability.learner_id} ({mode.value}): "
            f"global {ability.global_theta:+.3f} -> {updated.global_theta:+.3f}"
        )

        return updated, applied
