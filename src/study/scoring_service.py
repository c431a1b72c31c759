"""
Scoring Service.

Runs the per-response pipeline:

    evaluate -> decay update -> mastery EMA + stage transition
             -> ability update (gated by session mode)
             -> persist (one transaction)
             -> recompute component stats + bottleneck
             -> rescore the object (the whole queue when the primary
                bottleneck changed) and pick the next queue item

Evaluation, scheduling and persistence either all succeed or the exception
propagates with nothing written. A PersistenceError still carries the
evaluation so the learner sees whether the answer was right. The steps after the commit only refresh
derived caches: their failures are logged and the feedback carries no
bottleneck update and the prior queue.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from config import Settings, get_settings
from src.adaptive.bottleneck_detector import BottleneckAnalysis, BottleneckConfig, BottleneckDetector
from src.adaptive.component_stats import recompute_component_stats
from src.adaptive.priority_ranker import PriorityRanker, apply_irt_reordering
from src.core.components import ComponentType
from src.core.exceptions import MissingReferenceDataError, PersistenceError
from src.core.models import (
    ComponentErrorStats,
    LanguageObject,
    MasteryState,
    OutcomeRecord,
    QueueItem,
    ResponseFeedback,
    ResponsePayload,
    ensure_utc,
    utc_now,
)
from src.db.repository import SchedulerRepository
from src.learning.ability_tracker import AbilityTracker, ability_delta
from src.learning.decay_model import DecayParameters, DecayScheduler
from src.learning.mastery_state_machine import MasteryStateMachine, StageThresholds
from src.study.response_evaluator import ResponseEvaluator


@dataclass
class SessionSummary:
    """Aggregate of the feedback returned during one session."""

    total: int = 0
    correct: int = 0
    accuracy: float = 0.0
    average_credit: float = 0.0
    promotions: int = 0
    demotions: int = 0
    error_subtypes: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "correct": self.correct,
            "accuracy": self.accuracy,
            "average_credit": self.average_credit,
            "promotions": self.promotions,
            "demotions": self.demotions,
            "error_subtypes": dict(self.error_subtypes),
        }


def summarize_outcomes(feedbacks: Iterable[ResponseFeedback]) -> SessionSummary:
    """Summarize a session from its feedback objects."""
    feedbacks = list(feedbacks)
    if not feedbacks:
        return SessionSummary()

    subtypes: dict[str, int] = {}
    for fb in feedbacks:
        if fb.error_subtype:
            subtypes[fb.error_subtype] = subtypes.get(fb.error_subtype, 0) + 1

    correct = sum(1 for fb in feedbacks if fb.correct)
    return SessionSummary(
        total=len(feedbacks),
        correct=correct,
        accuracy=correct / len(feedbacks),
        average_credit=sum(fb.credit for fb in feedbacks) / len(feedbacks),
        promotions=sum(1 for fb in feedbacks if fb.promoted),
        demotions=sum(1 for fb in feedbacks if fb.demoted),
        error_subtypes=subtypes,
    )


class ScoringService:
    """
    Processes learner responses end to end.

    Usage:
        service = ScoringService(repository)
        feedback = service.process_response("learner-1", payload)
    """

    def __init__(
        self,
        repository: SchedulerRepository | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self.repository = repository or SchedulerRepository()

        self.evaluator = ResponseEvaluator.from_settings(settings.evaluator)
        self.decay = DecayScheduler(DecayParameters.from_settings(settings.decay))
        self.mastery = MasteryStateMachine(StageThresholds.from_settings(settings.mastery))
        self.abilities = AbilityTracker()
        self.bottleneck_config = BottleneckConfig.from_settings(settings.bottleneck)
        self.detector = BottleneckDetector(self.bottleneck_config)

        self._rankers: dict[str, PriorityRanker] = {}

    def ranker_for(self, learner_id: str) -> PriorityRanker:
        if learner_id not in self._rankers:
            self._rankers[learner_id] = PriorityRanker(self.settings.priority)
        return self._rankers[learner_id]

    # =========================================================================
    # Response pipeline
    # =========================================================================

    def process_response(
        self,
        learner_id: str,
        payload: ResponsePayload,
        now: datetime | None = None,
        scope_id: str | None = None,
    ) -> ResponseFeedback:
        """
        Evaluate one response and apply all state updates.

        Args:
            learner_id: Responding learner
            payload: Response from the presentation layer (validated on construction)
            now: Response time (defaults to UTC now)
            scope_id: Optional goal scope the outcome is filed under

        Returns:
            ResponseFeedback

        Raises:
            MissingReferenceDataError: Unknown object
            InvalidInputError: Invalid latency, cue level or derived rating
            PersistenceError: Store failure; nothing was committed
        """
        now = ensure_utc(now) or utc_now()

        obj = self.repository.get_language_object(payload.object_id)
        prior = self.repository.get_mastery_state(learner_id, obj.object_id) or MasteryState(
            learner_id=learner_id, object_id=obj.object_id
        )

        evaluation = self.evaluator.evaluate(payload.raw_response, obj.content, payload.response_latency_ms)

        state = self.decay.review(prior, evaluation.rating, payload.response_latency_ms, now)
        state = self.mastery.record_response(state, evaluation.correct, payload.cue_level_used)
        state, transition = self.mastery.transition(state)

        ability, applied = self.abilities.apply(
            self.repository.get_ability(learner_id),
            ability_delta(evaluation.correct, obj),
            payload.session_mode,
        )

        record = OutcomeRecord(
            learner_id=learner_id,
            object_id=obj.object_id,
            component=obj.component,
            correct=evaluation.correct,
            latency_ms=payload.response_latency_ms,
            cue_level=payload.cue_level_used,
            session_id=payload.session_id,
            timestamp=now,
            scope_id=scope_id,
        )
        try:
            self.repository.commit_outcome(state, record, ability if not applied.is_zero else None)
        except PersistenceError as e:
            logger.error(f"Could not store response {learner_id}/{obj.object_id}: {e}")
            e.evaluation = evaluation
            raise

        logger.info(
            f"Response {learner_id}/{obj.object_id}: "
            f"{'correct' if evaluation.correct else 'incorrect'} (credit={evaluation.credit:.2f}), "
            f"stage {transition.previous_stage} -> {transition.new_stage}"
        )

        analysis = self._refresh_bottleneck(learner_id, scope_id, now)
        next_item = self._rescore(learner_id, obj, state, analysis, now)

        return ResponseFeedback(
            correct=evaluation.correct,
            credit=evaluation.credit,
            feedback_text=evaluation.feedback,
            new_stage=state.stage,
            stage_changed=transition.changed,
            next_review_at=state.next_review_at,
            previous_stage=transition.previous_stage,
            rating=int(evaluation.rating),
            error_subtype=evaluation.error_subtype,
            correction=evaluation.correction,
            updated_bottleneck=analysis,
            next_queue_item=next_item,
            recommended_cue_level=int(self.mastery.select_cue_level(state)),
        )

    def _refresh_bottleneck(
        self, learner_id: str, scope_id: str | None, now: datetime
    ) -> BottleneckAnalysis | None:
        try:
            return self.recompute_bottleneck(learner_id, scope_id, now)
        except MissingReferenceDataError as e:
            logger.error(f"Outcome history for {learner_id} references missing data: {e}")
            return None
        except Exception as e:
            logger.warning(f"Bottleneck recomputation failed for {learner_id}: {e}")
            return None

    def _rescore(
        self,
        learner_id: str,
        obj: LanguageObject,
        state: MasteryState,
        analysis: BottleneckAnalysis | None,
        now: datetime,
    ) -> QueueItem | None:
        ranker = self.ranker_for(learner_id)
        # A failed analysis keeps the bottleneck the queue was scored against
        primary = analysis.primary_bottleneck if analysis else ranker.primary_bottleneck

        if ranker.needs_rebuild(primary):
            try:
                self._rebuild_queue(learner_id, primary, now)
            except Exception as e:
                logger.warning(f"Queue rebuild failed for {learner_id}, keeping prior queue: {e}")
        else:
            item = ranker.rescore_item(obj, state, primary, now)
            if item is not None:
                try:
                    self.repository.upsert_priority(learner_id, item, now)
                except Exception as e:
                    logger.warning(f"Could not cache priority for {obj.object_id}: {e}")

        return ranker.next_item()

    # =========================================================================
    # Bottleneck
    # =========================================================================

    def current_bottleneck(
        self,
        learner_id: str,
        scope_id: str | None = None,
        now: datetime | None = None,
    ) -> BottleneckAnalysis:
        """Analyze the learner's recent outcomes without touching stored stats."""
        records = self._window_records(learner_id, scope_id, now)
        return self.detector.analyze(records, self.repository.get_catalog(), now)

    def recompute_bottleneck(
        self,
        learner_id: str,
        scope_id: str | None = None,
        now: datetime | None = None,
    ) -> BottleneckAnalysis:
        """Recompute and store component stats, then run the bottleneck analysis."""
        now = ensure_utc(now) or utc_now()
        records = self._window_records(learner_id, scope_id, now)

        stats = self.recompute_stats(learner_id, records, scope_id, now)
        self.repository.upsert_component_stats(stats)

        return self.detector.analyze(records, self.repository.get_catalog(), now)

    def recompute_stats(
        self,
        learner_id: str,
        records: list[OutcomeRecord],
        scope_id: str | None,
        now: datetime,
    ) -> list[ComponentErrorStats]:
        return recompute_component_stats(learner_id, records, now, scope_id, self.bottleneck_config)

    def _window_records(
        self, learner_id: str, scope_id: str | None, now: datetime | None
    ) -> list[OutcomeRecord]:
        now = ensure_utc(now) or utc_now()
        since = now - timedelta(days=self.bottleneck_config.window_days)
        return self.repository.get_outcomes(learner_id, scope_id=scope_id, since=since)

    # =========================================================================
    # Queue
    # =========================================================================

    def review_queue(
        self,
        learner_id: str,
        now: datetime | None = None,
        primary: ComponentType | None = None,
        scope_id: str | None = None,
        irt_top_k: int | None = None,
    ) -> list[QueueItem]:
        """
        Rebuild the learner's full review queue and cache the scores.

        When no primary bottleneck is given, the current analysis supplies it.
        With irt_top_k > 0 (default: settings.irt_top_k) the returned list
        starts with the items most informative at the learner's global theta;
        the cached queue and stored priorities keep the S_eff order.
        """
        now = ensure_utc(now) or utc_now()
        if primary is None:
            primary = self.current_bottleneck(learner_id, scope_id, now).primary_bottleneck

        queue = self._rebuild_queue(learner_id, primary, now)

        top_k = self.settings.irt_top_k if irt_top_k is None else irt_top_k
        if top_k > 0:
            theta = self.repository.get_ability(learner_id).global_theta
            queue = apply_irt_reordering(queue, self.repository.get_catalog(), theta, top_k)
        return queue

    def _rebuild_queue(
        self, learner_id: str, primary: ComponentType | None, now: datetime
    ) -> list[QueueItem]:
        queue = self.ranker_for(learner_id).build_queue(
            self.repository.list_language_objects(),
            self.repository.list_mastery_states(learner_id),
            primary,
            now,
        )
        self.repository.upsert_priorities(learner_id, queue, now)
        return queue
