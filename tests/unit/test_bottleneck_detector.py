"""
Unit tests for bottleneck detection.

Records are built in memory; no database required.
"""

from datetime import timedelta

import pytest

from src.adaptive.bottleneck_detector import (
    BottleneckConfig,
    BottleneckDetector,
    BottleneckEvidence,
    CascadeAnalysis,
    analyze_cascading_errors,
    calculate_confidence,
    cooccurrence_pairs,
    improvement_trend,
    summarize_bottleneck,
)
from src.core.components import ComponentType
from src.core.exceptions import MissingReferenceDataError
from src.core.models import OutcomeRecord

PHON, MORPH, LEX, SYNT, PRAG = (
    ComponentType.PHON,
    ComponentType.MORPH,
    ComponentType.LEX,
    ComponentType.SYNT,
    ComponentType.PRAG,
)


@pytest.fixture
def detector():
    return BottleneckDetector()


def evidence(component, error_rate, total=20):
    return BottleneckEvidence(
        component=component,
        total=total,
        errors=round(error_rate * total),
        error_rate=error_rate,
    )


class TestInsufficientData:
    def test_below_minimum_reports_no_bottleneck(self, detector, make_records, sample_catalog, now):
        records = make_records(LEX, total=19, errors=15)

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.primary_bottleneck is None
        assert analysis.confidence == 0.0
        assert analysis.evidence == []
        assert analysis.recommendation == "Insufficient data for analysis (19/20 responses)."

    def test_records_outside_window_ignored(self, detector, make_records, sample_catalog, now):
        records = make_records(LEX, total=30, errors=20, start=now - timedelta(days=20))

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.total_responses == 0
        assert analysis.primary_bottleneck is None

    def test_empty_input(self, detector, sample_catalog, now):
        analysis = detector.analyze([], sample_catalog, now)
        assert analysis.confidence == 0.0

    def test_unknown_object_raises(self, detector, now):
        record = OutcomeRecord(
            learner_id="learner-1",
            object_id="missing",
            component=LEX,
            correct=False,
            latency_ms=1000,
            cue_level=0,
            session_id="s1",
            timestamp=now,
        )
        with pytest.raises(MissingReferenceDataError):
            detector.analyze([record], {}, now)


class TestCascade:
    def test_earliest_component_with_elevated_downstream_wins(self):
        # PHON 40% with LEX 35% downstream (>= 0.67 * 0.30)
        result = analyze_cascading_errors(
            [evidence(PHON, 0.40), evidence(MORPH, 0.10), evidence(LEX, 0.35), evidence(SYNT, 0.05), evidence(PRAG, 0.05)]
        )

        assert result.root_cause == PHON
        assert result.cascade_chain == [PHON, LEX]
        assert result.confidence == pytest.approx(0.70)

    def test_no_downstream_support_means_no_cascade(self):
        result = analyze_cascading_errors(
            [evidence(PHON, 0.10), evidence(MORPH, 0.05), evidence(LEX, 0.35), evidence(SYNT, 0.05), evidence(PRAG, 0.05)]
        )

        assert result.root_cause is None
        assert result.cascade_chain == []
        assert result.confidence == 0.0

    def test_downstream_threshold_boundary(self):
        # 0.19 is below 0.67 * 0.30 = 0.201
        below = analyze_cascading_errors([evidence(MORPH, 0.5), evidence(SYNT, 0.19)])
        above = analyze_cascading_errors([evidence(MORPH, 0.5), evidence(SYNT, 0.21)])

        assert below.root_cause is None
        assert above.root_cause == MORPH

    def test_last_component_cannot_cascade(self):
        assert analyze_cascading_errors([evidence(PRAG, 0.9)]).root_cause is None

    def test_evidence_order_does_not_matter(self):
        items = [evidence(SYNT, 0.25), evidence(LEX, 0.40), evidence(MORPH, 0.45)]
        assert analyze_cascading_errors(items).root_cause == MORPH
        assert analyze_cascading_errors(list(reversed(items))).root_cause == MORPH


class TestAnalyze:
    def test_cascade_root_reported(self, detector, make_records, sample_catalog, now):
        records = (
            make_records(PHON, total=10, errors=4)
            + make_records(MORPH, total=10, errors=1)
            + make_records(LEX, total=20, errors=7)
            + make_records(SYNT, total=20, errors=1)
            + make_records(PRAG, total=20, errors=1)
        )

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.primary_bottleneck == PHON
        assert analysis.cascade_chain == [PHON, LEX]
        assert analysis.cascade.confidence == pytest.approx(0.70)
        assert analysis.total_responses == 80
        assert "Improving this will also help with vocabulary" in analysis.recommendation
        assert "Specifically practice: th-sounds." in analysis.recommendation

    def test_fallback_to_highest_rate_has_zero_cascade_confidence(
        self, detector, make_records, sample_catalog, now
    ):
        records = (
            make_records(PHON, total=20, errors=2)
            + make_records(MORPH, total=20, errors=1)
            + make_records(LEX, total=20, errors=7)
            + make_records(SYNT, total=20, errors=1)
            + make_records(PRAG, total=20, errors=1)
        )

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.primary_bottleneck == LEX
        assert analysis.cascade.found is False
        assert analysis.cascade.confidence == 0.0
        assert analysis.cascade_chain == []

    def test_nothing_above_threshold(self, detector, make_records, sample_catalog, now):
        records = make_records(LEX, total=20, errors=2) + make_records(SYNT, total=20, errors=3)

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.primary_bottleneck is None
        assert analysis.recommendation.startswith("No significant bottleneck detected")
        assert summarize_bottleneck(analysis) == "No bottleneck detected"

    def test_unobserved_components_absent_from_evidence(self, detector, make_records, sample_catalog, now):
        records = make_records(LEX, total=10, errors=5) + make_records(SYNT, total=10, errors=0)

        analysis = detector.analyze(records, sample_catalog, now)

        assert {ev.component for ev in analysis.evidence} == {LEX, SYNT}

    def test_evidence_sorted_by_error_rate(self, detector, make_records, sample_catalog, now):
        records = (
            make_records(PHON, total=10, errors=1)
            + make_records(LEX, total=10, errors=6)
            + make_records(SYNT, total=10, errors=3)
        )

        analysis = detector.analyze(records, sample_catalog, now)

        rates = [ev.error_rate for ev in analysis.evidence]
        assert rates == sorted(rates, reverse=True)

    def test_error_patterns_extracted(self, detector, make_records, sample_catalog, now):
        records = make_records(MORPH, total=10, errors=5) + make_records(LEX, total=10, errors=1)

        analysis = detector.analyze(records, sample_catalog, now)
        morph = analysis.evidence_for(MORPH)

        assert morph.error_patterns == [("-ing endings", 5)]
        assert morph.to_dict()["error_patterns"] == ["-ing endings (5×)"]
        # A single error never forms a pattern
        assert analysis.evidence_for(LEX).error_patterns == []

    def test_improving_trend_noted(self, detector, make_records, sample_catalog, now):
        # Errors are front-loaded in each component's history
        records = make_records(LEX, total=20, errors=10)

        analysis = detector.analyze(records, sample_catalog, now)

        assert analysis.evidence_for(LEX).improvement == pytest.approx(1.0)
        assert "(Already improving - keep it up!)" in analysis.recommendation

    def test_recent_error_rate_uses_last_quarter(self, detector, make_records, sample_catalog, now):
        records = make_records(LEX, total=20, errors=10)

        analysis = detector.analyze(records, sample_catalog, now)

        # Last five of twenty records are all correct
        assert analysis.evidence_for(LEX).recent_error_rate == 0.0

    def test_analysis_serializes(self, detector, make_records, sample_catalog, now):
        analysis = detector.analyze(make_records(LEX, total=20, errors=10), sample_catalog, now)
        data = analysis.to_dict()

        assert data["primary_bottleneck"] == "LEX"
        assert data["evidence"][0]["component"] == "LEX"


class TestConfidence:
    def test_empty_evidence_is_zero(self):
        assert calculate_confidence([], 100, CascadeAnalysis()) == 0.0

    def test_data_and_differentiation(self):
        items = [evidence(LEX, 0.5, total=10), evidence(SYNT, 0.0, total=10)]
        # 20 / 50 data + min(0.2, 0.5) differentiation
        assert calculate_confidence(items, 20, CascadeAnalysis()) == pytest.approx(0.6)

    def test_cascade_boost(self):
        items = [evidence(LEX, 0.5, total=10), evidence(SYNT, 0.3, total=10)]
        cascade = CascadeAnalysis(root_cause=LEX, cascade_chain=[LEX, SYNT], confidence=0.7)
        assert calculate_confidence(items, 20, cascade) == pytest.approx(0.8)

    @pytest.mark.parametrize("total", [0, 1, 20, 50, 500])
    def test_always_bounded(self, total):
        items = [evidence(c, r) for c, r in [(PHON, 1.0), (MORPH, 0.0), (LEX, 0.9)]]
        cascade = CascadeAnalysis(root_cause=PHON, cascade_chain=[PHON, LEX], confidence=0.7)
        assert 0.0 <= calculate_confidence(items, total, cascade) <= 1.0

    def test_detector_confidence_bounded(self, detector, make_records, sample_catalog, now):
        records = make_records(PHON, total=40, errors=40) + make_records(LEX, total=40, errors=40)
        analysis = detector.analyze(records, sample_catalog, now)
        assert 0.0 <= analysis.confidence <= 1.0


class TestCooccurrence:
    def _error(self, component, object_id, session_id, now):
        return OutcomeRecord(
            learner_id="learner-1",
            object_id=object_id,
            component=component,
            correct=False,
            latency_ms=1000,
            cue_level=0,
            session_id=session_id,
            timestamp=now,
        )

    def test_pairs_seen_in_two_sessions(self, now):
        records = [
            self._error(PHON, "phon-1", "s1", now),
            self._error(LEX, "lex-1", "s1", now),
            self._error(PHON, "phon-1", "s2", now),
            self._error(LEX, "lex-1", "s2", now),
            self._error(SYNT, "synt-1", "s2", now),
        ]

        pairs = cooccurrence_pairs(records)

        assert len(pairs) == 1
        assert pairs[0].components == (PHON, LEX)
        assert pairs[0].count == 2

    def test_single_session_not_reported(self, now):
        records = [self._error(PHON, "phon-1", "s1", now), self._error(LEX, "lex-1", "s1", now)]
        assert cooccurrence_pairs(records) == []


class TestImprovementTrend:
    def test_needs_four_responses(self):
        assert improvement_trend([False, True, True]) == 0.0

    def test_improving(self):
        assert improvement_trend([False, False, True, True]) == pytest.approx(1.0)

    def test_declining(self):
        assert improvement_trend([True, True, False, False]) == pytest.approx(-1.0)


def test_config_from_settings():
    from config import BottleneckSettings

    config = BottleneckConfig.from_settings(BottleneckSettings(min_responses=5))
    assert config.min_responses == 5
    assert config.window_days == 14
