"""
Component error statistics and remediation planning.

Statistics are a materialized view: they are always recomputed wholesale from
the outcome records of the analysis window, never updated incrementally.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from src.adaptive.bottleneck_detector import BottleneckConfig
from src.core.components import CASCADE_ORDER, ComponentType
from src.core.models import ComponentErrorStats, OutcomeRecord, ensure_utc, utc_now

FOCUS_ERROR_RATE = 0.40
RISING_TREND = 0.30
BOTTLENECK_TREND = 0.5
REMEDIATION_FLOOR = 0.15

# Task types that exercise each component
TASK_TYPES: dict[ComponentType, list[str]] = {
    ComponentType.PHON: ["dictation", "listening_comprehension", "word_formation_analysis"],
    ComponentType.MORPH: ["word_formation_analysis", "constrained_fill", "sentence_completion"],
    ComponentType.LEX: ["cloze_deletion", "word_bank_fill", "matching", "collocation_judgment"],
    ComponentType.SYNT: [
        "sentence_combining",
        "sentence_splitting",
        "grammar_identification",
        "error_correction",
    ],
    ComponentType.PRAG: ["register_shift", "register_appropriateness", "dialogue_completion"],
}

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class RemediationStep:
    """One entry of a remediation plan."""

    component: ComponentType
    priority: str  # high | medium | low
    recommendation: str
    suggested_task_types: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "component": self.component.value,
            "priority": self.priority,
            "recommendation": self.recommendation,
            "suggested_task_types": list(self.suggested_task_types),
        }


def component_recommendation(component: ComponentType, error_rate: float, trend: float) -> str | None:
    if error_rate > FOCUS_ERROR_RATE:
        return f"Focus on {component.value} exercises. Error rate is {error_rate * 100:.0f}%."
    if trend > RISING_TREND:
        return f"{component.value} errors increasing. Consider review sessions."
    return None


def recompute_component_stats(
    learner_id: str,
    records: Iterable[OutcomeRecord],
    now: datetime | None = None,
    scope_id: str | None = None,
    config: BottleneckConfig | None = None,
) -> list[ComponentErrorStats]:
    """
    Recompute per-component error statistics for one learner.

    Args:
        learner_id: Learner the records belong to
        records: Outcome records (filtered to learner, scope and window here)
        now: Reference time (defaults to UTC now)
        scope_id: Optional goal scope; None covers every record
        config: Window and threshold settings

    Returns:
        One ComponentErrorStats per component, in cascade order
    """
    config = config or BottleneckConfig()
    now = ensure_utc(now) or utc_now()
    since = now - timedelta(days=config.window_days)
    recent_since = now - timedelta(days=config.recent_window_days)

    windowed = [
        r
        for r in records
        if r.learner_id == learner_id
        and (scope_id is None or r.scope_id == scope_id)
        and since <= r.timestamp <= now
    ]

    results = []
    for component in CASCADE_ORDER:
        mine = [r for r in windowed if r.component == component]
        recent = [r for r in mine if r.timestamp >= recent_since]
        older = [r for r in mine if r.timestamp < recent_since]

        total = len(mine)
        errors = sum(1 for r in mine if not r.correct)
        recent_errors = sum(1 for r in recent if not r.correct)
        older_errors = errors - recent_errors

        error_rate = errors / total if total else 0.0
        recent_rate = recent_errors / len(recent) if recent else 0.0
        older_rate = older_errors / len(older) if older else 0.0
        # Without an older baseline there is nothing to compare against
        trend = recent_rate - older_rate if older and recent else 0.0

        results.append(
            ComponentErrorStats(
                learner_id=learner_id,
                component=component,
                scope_id=scope_id,
                total_responses=total,
                total_errors=errors,
                recent_errors=recent_errors,
                error_rate=error_rate,
                trend=trend,
                recommendation=component_recommendation(component, error_rate, trend),
                is_bottleneck=total > 0
                and (error_rate >= config.error_rate_threshold or trend > BOTTLENECK_TREND),
            )
        )

    flagged = [s.component.value for s in results if s.is_bottleneck]
    logger.info(
        f"Recomputed component stats for {learner_id} over {len(windowed)} responses"
        + (f" (flagged: {', '.join(flagged)})" if flagged else "")
    )

    return results


def primary_bottleneck(stats: Iterable[ComponentErrorStats]) -> ComponentErrorStats | None:
    """Flagged component with the highest error rate (earlier component wins ties)."""
    flagged = [s for s in stats if s.is_bottleneck]
    if not flagged:
        return None
    return min(flagged, key=lambda s: (-s.error_rate, s.component.position))


def remediation_priority(stat: ComponentErrorStats) -> str:
    if stat.error_rate >= 0.4 or stat.trend > 0.5:
        return "high"
    if stat.error_rate >= 0.25 or stat.trend > 0.2:
        return "medium"
    return "low"


def remediation_plan(
    stats: Iterable[ComponentErrorStats],
    patterns: Mapping[ComponentType, list[tuple[str, int]]] | None = None,
) -> list[RemediationStep]:
    """
    Build a remediation plan from component statistics.

    Components that are neither flagged nor above the 15% floor are skipped.
    When error patterns are supplied, the most common one is appended to the
    recommendation.
    """
    patterns = patterns or {}
    plan = []

    for stat in stats:
        if not stat.is_bottleneck and stat.error_rate < REMEDIATION_FLOOR:
            continue

        recommendation = stat.recommendation or ""
        component_patterns = patterns.get(stat.component)
        if component_patterns:
            label, count = component_patterns[0]
            recommendation += f" Most common error: {label} ({count} occurrences)."

        plan.append(
            RemediationStep(
                component=stat.component,
                priority=remediation_priority(stat),
                recommendation=recommendation.strip(),
                suggested_task_types=list(TASK_TYPES[stat.component]),
            )
        )

    plan.sort(key=lambda step: (PRIORITY_ORDER[step.priority], step.component.position))
    return plan
