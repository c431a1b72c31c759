"""
Integration tests for the response pipeline against an in-memory database.

Exercises ScoringService end to end: evaluation, scheduling, mastery,
ability gating, atomic persistence and the derived caches.
"""

from dataclasses import replace
from datetime import timedelta

import pytest
from loguru import logger
from sqlalchemy.exc import OperationalError

from config import Settings
from src.adaptive.priority_ranker import PriorityRanker
from src.core.components import ComponentType
from src.core.exceptions import MissingReferenceDataError, PersistenceError
from src.core.models import LearnerAbility, ResponsePayload, SessionMode
from src.db.database import create_scheduler_engine, init_db, make_session_factory
from src.db.repository import SchedulerRepository
from src.learning.decay_model import Rating
from src.learning.mastery_state_machine import CueLevel
from src.study.scoring_service import ScoringService, summarize_outcomes

LEARNER = "learner-1"


@pytest.fixture
def repository(sample_catalog):
    engine = create_scheduler_engine("sqlite://")
    init_db(engine)
    repo = SchedulerRepository(make_session_factory(engine))
    repo.upsert_language_objects(sample_catalog.values())
    yield repo
    engine.dispose()


@pytest.fixture
def service(repository):
    return ScoringService(repository, settings=Settings(_env_file=None))


def answer(object_id, response, latency_ms=2000, cue_level=0, mode=SessionMode.TRAINING, session_id="s1"):
    return ResponsePayload(
        object_id=object_id,
        raw_response=response,
        response_latency_ms=latency_ms,
        cue_level_used=cue_level,
        session_id=session_id,
        session_mode=mode,
    )


class TestFirstResponse:
    def test_fast_exact_answer(self, service, repository, now):
        feedback = service.process_response(LEARNER, answer("lex-1", "House"), now)

        assert feedback.correct is True
        assert feedback.credit == 1.0
        assert feedback.rating == Rating.EASY
        assert feedback.new_stage == 0
        assert feedback.stage_changed is False
        assert feedback.next_review_at == now + timedelta(days=5.8)

        state = repository.get_mastery_state(LEARNER, "lex-1")
        assert state.decay_stability == pytest.approx(5.8)
        assert state.cue_free_accuracy == pytest.approx(0.2)
        assert state.exposure_count == 1
        assert state.last_review_at == now

    def test_bottleneck_needs_more_data(self, service, now):
        feedback = service.process_response(LEARNER, answer("lex-1", "house"), now)

        assert feedback.updated_bottleneck is not None
        assert feedback.updated_bottleneck.primary_bottleneck is None
        assert feedback.updated_bottleneck.confidence == 0.0

    def test_next_item_comes_from_queue(self, service, now):
        feedback = service.process_response(LEARNER, answer("lex-1", "house"), now)

        assert feedback.next_queue_item is not None
        # The just-reviewed object is no longer due, the others are new
        assert feedback.next_queue_item.object_id != "lex-1"
        assert len(service.ranker_for(LEARNER).queue) == 5


class TestMasteryProgression:
    def test_consecutive_correct_answers_promote(self, service, now):
        stages = []
        for day in range(5):
            feedback = service.process_response(LEARNER, answer("lex-1", "house"), now + timedelta(days=day))
            stages.append(feedback.new_stage)

        assert stages == [0, 0, 0, 1, 2]

    def test_promotion_flag(self, service, now):
        feedbacks = [
            service.process_response(LEARNER, answer("lex-1", "house"), now + timedelta(days=day))
            for day in range(4)
        ]
        assert feedbacks[-1].promoted
        assert summarize_outcomes(feedbacks).promotions == 1

    def test_wrong_answer_is_a_lapse(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "house"), now)
        feedback = service.process_response(LEARNER, answer("lex-1", "garden"), now + timedelta(days=3))

        assert feedback.correct is False
        assert feedback.rating == Rating.AGAIN
        assert feedback.correction == "house"
        state = repository.get_mastery_state(LEARNER, "lex-1")
        assert state.lapses == 1
        assert state.decay_stability == pytest.approx(5.8 * 0.2)


class TestFailures:
    def test_unknown_object_writes_nothing(self, service, repository, now):
        with pytest.raises(MissingReferenceDataError):
            service.process_response(LEARNER, answer("missing", "house"), now)

        assert repository.get_outcomes(LEARNER) == []
        assert repository.list_mastery_states(LEARNER) == {}

    def test_store_failure_is_atomic(self, service, repository, monkeypatch, now):
        def fail(session, record):
            raise OperationalError("INSERT INTO outcome_records", {}, Exception("disk I/O error"))

        monkeypatch.setattr(SchedulerRepository, "_write_outcome", staticmethod(fail))

        with pytest.raises(PersistenceError) as excinfo:
            service.process_response(LEARNER, answer("lex-1", "house"), now)

        # The grading survives the failed write
        assert excinfo.value.evaluation.correct is True
        assert excinfo.value.evaluation.credit == 1.0

        monkeypatch.undo()
        assert repository.get_mastery_state(LEARNER, "lex-1") is None
        assert repository.get_outcomes(LEARNER) == []

    def test_detector_failure_degrades(self, service, repository, monkeypatch, now):
        def broken(*args, **kwargs):
            raise RuntimeError("detector unavailable")

        monkeypatch.setattr(service.detector, "analyze", broken)

        feedback = service.process_response(LEARNER, answer("lex-1", "house"), now)

        assert feedback.correct is True
        assert feedback.updated_bottleneck is None
        assert repository.get_mastery_state(LEARNER, "lex-1") is not None

    def test_dangling_history_logged_as_error(self, service, monkeypatch, now):
        def dangling(*args, **kwargs):
            raise MissingReferenceDataError("Outcome record references unknown object 'gone'")

        monkeypatch.setattr(service.detector, "analyze", dangling)
        levels = []
        handler_id = logger.add(lambda message: levels.append(message.record["level"].name), level="WARNING")
        try:
            feedback = service.process_response(LEARNER, answer("lex-1", "house"), now)
        finally:
            logger.remove(handler_id)

        assert feedback.correct is True
        assert feedback.updated_bottleneck is None
        assert levels == ["ERROR"]


class TestAbilityGate:
    def test_learning_mode_leaves_ability_unchanged(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "house", mode=SessionMode.LEARNING), now)

        ability = repository.get_ability(LEARNER)
        assert ability.global_theta == 0.0
        assert ability.theta_for(ComponentType.LEX) == 0.0

    def test_evaluation_mode_moves_component_theta(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "house", mode=SessionMode.EVALUATION), now)

        ability = repository.get_ability(LEARNER)
        assert ability.theta_for(ComponentType.LEX) == pytest.approx(0.1)
        assert ability.global_theta == pytest.approx(0.05)

    def test_learning_mode_still_updates_mastery(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "house", mode=SessionMode.LEARNING), now)
        assert repository.get_mastery_state(LEARNER, "lex-1").exposure_count == 1


class TestDerivedCaches:
    def test_stats_recompute_is_idempotent(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "garden"), now)
        service.recompute_bottleneck(LEARNER, now=now)
        service.recompute_bottleneck(LEARNER, now=now)

        stats = repository.get_component_stats(LEARNER)

        assert len(stats) == 5
        lex = next(s for s in stats if s.component == ComponentType.LEX)
        assert lex.total_responses == 1
        assert lex.error_rate == 1.0

    def test_bottleneck_boost_reaches_queue(self, service, repository, now):
        # 20 wrong morphology answers across a week
        for i in range(20):
            service.process_response(
                LEARNER, answer("morph-1", "walk"), now - timedelta(days=7) + timedelta(hours=i * 6)
            )

        analysis = service.current_bottleneck(LEARNER, now=now)
        queue = service.review_queue(LEARNER, now)

        assert analysis.primary_bottleneck == ComponentType.MORPH
        morph = next(item for item in queue if item.object_id == "morph-1")
        assert morph.bottleneck_boost == pytest.approx(0.1)

        state = repository.get_mastery_state(LEARNER, "morph-1")
        assert state.cached_priority == pytest.approx(morph.effective_priority)

    def test_bottleneck_shift_rescores_whole_queue(self, service, repository, now):
        for i in range(20):
            service.process_response(LEARNER, answer("lex-1", "garden"), now + timedelta(minutes=i))

        lex = next(q for q in service.ranker_for(LEARNER).queue if q.object_id == "lex-1")
        assert lex.bottleneck_boost == pytest.approx(0.1)

        # One phonology error makes PHON the cascade root over LEX
        at = now + timedelta(minutes=20)
        feedback = service.process_response(LEARNER, answer("phon-1", "dog"), at)

        assert feedback.updated_bottleneck.primary_bottleneck == ComponentType.PHON

        live = service.ranker_for(LEARNER).queue
        fresh = PriorityRanker(service.settings.priority).build_queue(
            repository.list_language_objects(),
            repository.list_mastery_states(LEARNER),
            ComponentType.PHON,
            at,
        )
        assert live == fresh

        lex = next(q for q in live if q.object_id == "lex-1")
        assert lex.bottleneck_boost == 0.0
        assert repository.get_mastery_state(LEARNER, "lex-1").cached_priority == pytest.approx(
            lex.effective_priority
        )

    def test_outcomes_oldest_first(self, service, repository, now):
        service.process_response(LEARNER, answer("lex-1", "house"), now + timedelta(hours=2))
        service.process_response(LEARNER, answer("synt-1", "if it rains, we stay"), now)

        outcomes = repository.get_outcomes(LEARNER)
        assert [o.object_id for o in outcomes] == ["synt-1", "lex-1"]
        assert outcomes[0].record_id is not None


class TestCueRecommendation:
    def test_cued_answers_keep_full_scaffolding(self, service, now):
        service.process_response(LEARNER, answer("lex-1", "house", cue_level=2), now)
        feedback = service.process_response(
            LEARNER, answer("lex-1", "house", cue_level=2), now + timedelta(days=1)
        )

        # Cue-assisted accuracy 0.36 against cue-free 0.0
        assert feedback.recommended_cue_level == CueLevel.FULL
        queued = next(q for q in service.ranker_for(LEARNER).queue if q.object_id == "lex-1")
        assert queued.recommended_cue_level == CueLevel.FULL

    def test_cues_withdrawn_as_learner_succeeds_unaided(self, service, now):
        feedbacks = [
            service.process_response(LEARNER, answer("lex-1", "house"), now + timedelta(days=day))
            for day in range(4)
        ]
        levels = [fb.recommended_cue_level for fb in feedbacks]

        assert levels == [CueLevel.MODERATE, CueLevel.MODERATE, CueLevel.MINIMAL, CueLevel.NONE]


class TestIRTQueue:
    @pytest.fixture
    def calibrated(self, repository, sample_catalog):
        # Everything hard except prag-1
        repository.upsert_language_objects(
            replace(obj, irt_difficulty=2.5) for key, obj in sample_catalog.items() if key != "prag-1"
        )
        return repository

    def test_disabled_by_default(self, service, calibrated, now):
        queue = service.review_queue(LEARNER, now)
        assert [q.object_id for q in queue] == ["lex-1", "morph-1", "phon-1", "prag-1", "synt-1"]

    def test_front_loads_items_matching_theta(self, service, calibrated, now):
        queue = service.review_queue(LEARNER, now, irt_top_k=1)

        assert queue[0].object_id == "prag-1"
        assert [q.object_id for q in queue[1:]] == ["lex-1", "morph-1", "phon-1", "synt-1"]
        # The cached queue keeps the priority order
        assert service.ranker_for(LEARNER).next_item().object_id == "lex-1"

    def test_follows_learner_ability(self, service, calibrated, now):
        calibrated.upsert_ability(LearnerAbility(learner_id=LEARNER, global_theta=2.5))

        queue = service.review_queue(LEARNER, now, irt_top_k=5)

        assert queue[-1].object_id == "prag-1"

    def test_top_k_from_settings(self, repository, calibrated, now):
        service = ScoringService(repository, settings=Settings(_env_file=None, irt_top_k=1))
        assert service.review_queue(LEARNER, now)[0].object_id == "prag-1"


def test_repository_round_trip(repository, sample_catalog):
    assert repository.get_language_object("phon-1") == sample_catalog["phon-1"]
    assert set(repository.get_catalog()) == set(sample_catalog)
