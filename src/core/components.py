"""
Linguistic component hierarchy.

Errors cascade through the hierarchy in a fixed order:
Phonology -> Morphology -> Lexical -> Syntactic -> Pragmatic

A morphology problem (e.g. verb conjugation) shows up as errors in lexical,
syntactic and pragmatic tasks, so root-cause analysis walks CASCADE_ORDER
from the most foundational component onwards.
"""

from __future__ import annotations

from enum import Enum

from src.core.exceptions import MissingReferenceDataError


class ComponentType(str, Enum):
    """Linguistic component tag carried by every language object."""

    PHON = "PHON"
    MORPH = "MORPH"
    LEX = "LEX"
    SYNT = "SYNT"
    PRAG = "PRAG"

    @classmethod
    def parse(cls, value: str | ComponentType) -> ComponentType:
        """
        Resolve a component tag.

        Raises:
            MissingReferenceDataError: If the tag is not a known component
        """
        if isinstance(value, ComponentType):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise MissingReferenceDataError(f"Unknown component tag: {value!r}") from e

    @property
    def position(self) -> int:
        """Cascade position (lower = more foundational)."""
        return CASCADE_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return COMPONENT_NAMES[self]

    @property
    def short_name(self) -> str:
        return COMPONENT_SHORT[self]

    def downstream(self) -> tuple[ComponentType, ...]:
        """Components this one can drag down."""
        return CASCADE_ORDER[self.position + 1 :]

    def upstream(self) -> tuple[ComponentType, ...]:
        """Components that could be the root cause of errors here."""
        return CASCADE_ORDER[: self.position]

    def can_cause_errors(self, other: ComponentType) -> bool:
        return self.position < other.position


# Fixed total order, foundational -> advanced
CASCADE_ORDER: tuple[ComponentType, ...] = (
    ComponentType.PHON,
    ComponentType.MORPH,
    ComponentType.LEX,
    ComponentType.SYNT,
    ComponentType.PRAG,
)

COMPONENT_NAMES: dict[ComponentType, str] = {
    ComponentType.PHON: "Phonology (sounds and pronunciation)",
    ComponentType.MORPH: "Morphology (word forms and structure)",
    ComponentType.LEX: "Vocabulary (word meanings)",
    ComponentType.SYNT: "Syntax (sentence structure)",
    ComponentType.PRAG: "Pragmatics (context and usage)",
}

COMPONENT_SHORT: dict[ComponentType, str] = {
    ComponentType.PHON: "pronunciation",
    ComponentType.MORPH: "word forms",
    ComponentType.LEX: "vocabulary",
    ComponentType.SYNT: "grammar",
    ComponentType.PRAG: "usage",
}


def is_component_type(value: str) -> bool:
    """Check whether a raw tag names a component."""
    return value in {c.value for c in CASCADE_ORDER}
