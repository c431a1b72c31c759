"""
Priority Ranker.

Orders language objects for presentation:

    S_eff = S_base * g(m) + w_u * urgency + bottleneck_boost

- S_base: weighted value vector (frequency, relational density, domain
  relevance, morphological complexity, phonological difficulty)
- g(m): mastery adjustment, focusing effort on items in the learning zone
- urgency: review timing pressure
- bottleneck_boost: w_b when the item's component is the learner's primary
  bottleneck

Queue order is total: S_eff descending, then lower stage, then higher base
value, then object id.

apply_irt_reordering is an optional presentation step on top of that order:
it pulls the items most informative at the learner's ability (2PL Fisher
information) to the front.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from config import PriorityWeights
from src.core.components import ComponentType
from src.core.models import (
    LanguageObject,
    MasteryState,
    ObjectValueVector,
    QueueItem,
    ensure_utc,
    utc_now,
)
from src.learning.mastery_state_machine import MasteryStateMachine

STAGE_FACTORS = {0: 1.0, 1: 0.9, 2: 0.7, 3: 0.5, 4: 0.3}

OVERDUE_RAMP_HOURS = 48
UPCOMING_DECAY_HOURS = 168  # One week
MIN_UPCOMING_URGENCY = 0.1
NEVER_REVIEWED_URGENCY = 1.0


# =============================================================================
# Score components
# =============================================================================


def base_value(values: ObjectValueVector, weights: PriorityWeights) -> float:
    """Learner-independent value of an object."""
    return (
        weights.frequency * values.frequency
        + weights.relational * values.relational_density
        + weights.domain * values.domain_relevance
        + weights.morphological * values.morphological_complexity
        + weights.phonological * values.phonological_difficulty
    )


def stage_factor(stage: int) -> float:
    """Lower stages are weighted higher."""
    return STAGE_FACTORS.get(stage, STAGE_FACTORS[4])


def accuracy_factor(cue_free_accuracy: float) -> float:
    """Peak effort for items in the learning zone (40-70% accuracy)."""
    if cue_free_accuracy < 0.40:
        return 0.8
    if cue_free_accuracy <= 0.70:
        return 1.0
    if cue_free_accuracy <= 0.90:
        return 0.6
    return 0.3


def gap_factor(scaffolding_gap: float) -> float:
    """Reliance on cues raises priority."""
    return 1 + 0.5 * scaffolding_gap


def mastery_adjustment(state: MasteryState | None) -> float:
    """g(m) = stage factor * accuracy factor * gap factor."""
    if state is None:
        return stage_factor(0) * accuracy_factor(0.0) * gap_factor(0.0)
    return (
        stage_factor(state.stage)
        * accuracy_factor(state.cue_free_accuracy)
        * gap_factor(state.scaffolding_gap)
    )


def urgency_score(next_review_at: datetime | None, now: datetime | None = None) -> float:
    """
    Review timing pressure in [0.1, 1].

    Overdue items ramp from 0.5 to 1.0 over two days; upcoming items decay
    from 0.5 to the 0.1 floor over a week. Never-scheduled items are maximally
    urgent.
    """
    if next_review_at is None:
        return NEVER_REVIEWED_URGENCY

    now = ensure_utc(now) or utc_now()
    hours = (now - ensure_utc(next_review_at)).total_seconds() / 3600

    if hours >= 0:
        return min(1.0, 0.5 + hours / OVERDUE_RAMP_HOURS)
    return max(MIN_UPCOMING_URGENCY, 0.5 - (-hours) / UPCOMING_DECAY_HOURS)


def queue_sort_key(item: QueueItem) -> tuple:
    return (-item.effective_priority, item.stage, -item.base_value, item.object_id)


# =============================================================================
# Ranker
# =============================================================================


@dataclass
class QueueAnalysis:
    """Composition of a review queue."""

    total_items: int = 0
    due_items: int = 0
    new_items: int = 0
    bottleneck_items: int = 0
    average_priority: float = 0.0
    component_distribution: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "due_items": self.due_items,
            "new_items": self.new_items,
            "bottleneck_items": self.bottleneck_items,
            "average_priority": self.average_priority,
            "component_distribution": dict(self.component_distribution),
        }


class PriorityRanker:
    """
    Scores objects and maintains a learner's review queue.

    The queue is a derived cache: it can always be rebuilt from objects,
    mastery states and the current primary bottleneck. If a rebuild fails,
    the previous queue is kept.
    """

    def __init__(self, weights: PriorityWeights | None = None):
        self.weights = weights or PriorityWeights()
        self._queue: list[QueueItem] = []
        # Bottleneck the current queue was scored against
        self.primary_bottleneck: ComponentType | None = None

    @property
    def queue(self) -> list[QueueItem]:
        return list(self._queue)

    def score(
        self,
        obj: LanguageObject,
        state: MasteryState | None,
        primary_bottleneck: ComponentType | None = None,
        now: datetime | None = None,
    ) -> QueueItem:
        """Compute the effective priority of one object."""
        now = ensure_utc(now) or utc_now()

        s_base = base_value(obj.values, self.weights)
        g = mastery_adjustment(state)
        urgency = urgency_score(state.next_review_at if state else None, now)
        boost = self.weights.bottleneck if obj.component == primary_bottleneck else 0.0
        cue_state = state or MasteryState(learner_id="", object_id=obj.object_id)

        effective = s_base * g + self.weights.urgency * urgency + boost

        return QueueItem(
            object_id=obj.object_id,
            component=obj.component,
            effective_priority=effective,
            base_value=s_base,
            mastery_adjustment=g,
            urgency=urgency,
            bottleneck_boost=boost,
            stage=state.stage if state else 0,
            is_new=state is None or state.is_new,
            is_due=state is None or state.is_due(now),
            recommended_cue_level=int(MasteryStateMachine.select_cue_level(cue_state)),
        )

    def needs_rebuild(self, primary_bottleneck: ComponentType | None) -> bool:
        """True when the queue is empty or was scored against another bottleneck."""
        return not self._queue or primary_bottleneck != self.primary_bottleneck

    def build_queue(
        self,
        objects: Iterable[LanguageObject],
        states: Mapping[str, MasteryState],
        primary_bottleneck: ComponentType | None = None,
        now: datetime | None = None,
    ) -> list[QueueItem]:
        """
        Rank every object; objects without a state are treated as new.

        Returns:
            Sorted queue (the prior queue on failure)
        """
        now = ensure_utc(now) or utc_now()
        try:
            items = [
                self.score(obj, states.get(obj.object_id), primary_bottleneck, now) for obj in objects
            ]
            items.sort(key=queue_sort_key)
        except Exception as e:
            logger.warning(f"Priority ranking failed, keeping prior queue: {e}")
            return self.queue

        self._queue = items
        self.primary_bottleneck = primary_bottleneck
        logger.debug(
            f"Built queue of {len(items)} items"
            + (f" (bottleneck: {primary_bottleneck.value})" if primary_bottleneck else "")
        )
        return self.queue

    def rescore_item(
        self,
        obj: LanguageObject,
        state: MasteryState,
        primary_bottleneck: ComponentType | None = None,
        now: datetime | None = None,
    ) -> QueueItem | None:
        """
        Recompute one object's priority after a response and reposition it.

        Returns:
            The new queue item, or None if scoring failed (queue unchanged)
        """
        try:
            item = self.score(obj, state, primary_bottleneck, now)
        except Exception as e:
            logger.warning(f"Rescoring {obj.object_id} failed, keeping prior queue: {e}")
            return None

        queue = [q for q in self._queue if q.object_id != obj.object_id]
        queue.append(item)
        queue.sort(key=queue_sort_key)
        self._queue = queue
        return item

    def refresh_urgency(
        self,
        states: Mapping[str, MasteryState],
        now: datetime | None = None,
    ) -> list[QueueItem]:
        """
        Recompute urgency for the whole queue at a new time.

        Idempotent: refreshing twice at the same instant gives the same queue.
        """
        now = ensure_utc(now) or utc_now()
        try:
            refreshed = []
            for item in self._queue:
                state = states.get(item.object_id)
                urgency = urgency_score(state.next_review_at if state else None, now)
                effective = (
                    item.base_value * item.mastery_adjustment
                    + self.weights.urgency * urgency
                    + item.bottleneck_boost
                )
                refreshed.append(
                    QueueItem(
                        object_id=item.object_id,
                        component=item.component,
                        effective_priority=effective,
                        base_value=item.base_value,
                        mastery_adjustment=item.mastery_adjustment,
                        urgency=urgency,
                        bottleneck_boost=item.bottleneck_boost,
                        stage=item.stage,
                        is_new=item.is_new,
                        is_due=state is None or state.is_due(now),
                        recommended_cue_level=item.recommended_cue_level,
                    )
                )
            refreshed.sort(key=queue_sort_key)
        except Exception as e:
            logger.warning(f"Urgency refresh failed, keeping prior queue: {e}")
            return self.queue

        self._queue = refreshed
        return self.queue

    def next_item(self, exclude: Iterable[str] = ()) -> QueueItem | None:
        """Highest-priority item not in exclude."""
        excluded = set(exclude)
        for item in self._queue:
            if item.object_id not in excluded:
                return item
        return None


# =============================================================================
# Session helpers
# =============================================================================


def select_session_items(
    queue: list[QueueItem],
    session_size: int,
    new_item_ratio: float = 0.3,
) -> list[QueueItem]:
    """
    Pick items for one session, balancing reviews against new material.

    At most floor(size * ratio) slots go to new items; the rest go to due
    reviews. The selection keeps queue order.
    """
    max_new = int(session_size * new_item_ratio)
    max_due = session_size - max_new

    due = [q for q in queue if not q.is_new and q.is_due][:max_due]
    new = [q for q in queue if q.is_new][:max_new]

    selected = due + new
    selected.sort(key=queue_sort_key)
    return selected[:session_size]


def fisher_information(theta: float, discrimination: float, difficulty: float) -> float:
    """2PL item information: a^2 * P * (1 - P) with P = 1 / (1 + e^(-a(theta - b)))."""
    p = 1 / (1 + math.exp(-discrimination * (theta - difficulty)))
    return discrimination**2 * p * (1 - p)


def apply_irt_reordering(
    queue: list[QueueItem],
    objects: Mapping[str, LanguageObject],
    theta: float,
    top_k: int = 10,
) -> list[QueueItem]:
    """
    Move the top_k most informative items at theta to the front.

    The selected items are ordered by information (ties keep queue order);
    the rest follow in their original order. Items without a known object
    use discrimination 1.0 and difficulty 0.0.
    """
    if top_k <= 0 or not queue:
        return list(queue)

    def info(item: QueueItem) -> float:
        obj = objects.get(item.object_id)
        a = obj.irt_discrimination if obj else 1.0
        b = obj.irt_difficulty if obj else 0.0
        return fisher_information(theta, a, b)

    ranked = sorted(range(len(queue)), key=lambda i: -info(queue[i]))
    selected = set(ranked[:top_k])

    return [queue[i] for i in ranked[:top_k]] + [
        item for i, item in enumerate(queue) if i not in selected
    ]


def analyze_queue(queue: list[QueueItem]) -> QueueAnalysis:
    """Summarize queue composition."""
    if not queue:
        return QueueAnalysis()

    distribution = Counter(item.component.value for item in queue)
    return QueueAnalysis(
        total_items=len(queue),
        due_items=sum(1 for item in queue if item.is_due),
        new_items=sum(1 for item in queue if item.is_new),
        bottleneck_items=sum(1 for item in queue if item.is_bottleneck),
        average_priority=sum(item.effective_priority for item in queue) / len(queue),
        component_distribution=dict(distribution),
    )
