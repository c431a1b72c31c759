"""
Error sub-pattern classification.

Groups individual errors inside one component into coarse pattern labels
using lightweight content heuristics (suffix shape for morphology, length
bucket for vocabulary, clause markers for syntax, ...).

The heuristics are expected to evolve, so classifiers are registered per
component and can be swapped:

    @PatternRegistry.register(ComponentType.LEX)
    def my_lexical_classifier(content: str) -> str:
        ...

The contract that stays fixed is the signature (component, content) -> label
and the summarization rule: keep labels seen at least twice, top five by count.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Callable, Iterable

from src.core.components import ComponentType

PatternClassifier = Callable[[str], str]

MIN_PATTERN_OCCURRENCES = 2
MAX_PATTERNS = 5
UNCLASSIFIED = "unclassified"


class PatternRegistry:
    """Registry of per-component pattern classifiers."""

    _classifiers: dict[ComponentType, PatternClassifier] = {}

    @classmethod
    def register(cls, component: ComponentType) -> Callable[[PatternClassifier], PatternClassifier]:
        """Decorator registering a classifier for a component."""

        def decorator(func: PatternClassifier) -> PatternClassifier:
            cls._classifiers[component] = func
            return func

        return decorator

    @classmethod
    def get(cls, component: ComponentType) -> PatternClassifier | None:
        return cls._classifiers.get(component)


def classify_error(component: ComponentType, content: str) -> str:
    """Map (component, content) to a finite pattern label."""
    classifier = PatternRegistry.get(ComponentType.parse(component))
    if classifier is None:
        return UNCLASSIFIED
    return classifier(content.lower())


def summarize_patterns(labels: Iterable[str]) -> list[tuple[str, int]]:
    """
    Reduce raw labels to the reported pattern list.

    Returns:
        Up to five (label, count) pairs seen at least twice, most frequent first
    """
    counts = Counter(labels)
    frequent = [(label, n) for label, n in counts.items() if n >= MIN_PATTERN_OCCURRENCES]
    frequent.sort(key=lambda item: (-item[1], item[0]))
    return frequent[:MAX_PATTERNS]


def format_pattern(label: str, count: int) -> str:
    return f"{label} ({count}×)"


# =============================================================================
# Default heuristics
# =============================================================================


@PatternRegistry.register(ComponentType.PHON)
def _phonological_pattern(content: str) -> str:
    if "th" in content:
        return "th-sounds"
    if "r" in content or "l" in content:
        return "r/l distinction"
    if re.search(r"[aeiou]{2}", content):
        return "vowel combinations"
    return "other pronunciation"


@PatternRegistry.register(ComponentType.MORPH)
def _morphological_pattern(content: str) -> str:
    if content.endswith("ing"):
        return "-ing endings"
    if content.endswith("ed"):
        return "-ed endings"
    if content.endswith("tion"):
        return "-tion nominalizations"
    if content.endswith("s"):
        return "plurals/3rd person"
    return "other word forms"


@PatternRegistry.register(ComponentType.LEX)
def _lexical_pattern(content: str) -> str:
    if len(content) > 10:
        return "complex vocabulary"
    if len(content) <= 4:
        return "basic vocabulary"
    return "intermediate vocabulary"


@PatternRegistry.register(ComponentType.SYNT)
def _syntactic_pattern(content: str) -> str:
    words = set(re.findall(r"[a-z']+", content))
    if words & {"if", "when"}:
        return "conditional clauses"
    if words & {"who", "which"}:
        return "relative clauses"
    if "," in content:
        return "compound sentences"
    return "simple sentence patterns"


@PatternRegistry.register(ComponentType.PRAG)
def _pragmatic_pattern(content: str) -> str:
    if "please" in content or "could" in content:
        return "politeness markers"
    if "sorry" in content or "excuse" in content:
        return "apology patterns"
    return "discourse markers"
