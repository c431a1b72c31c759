"""
Bottleneck Detection Engine.

Identifies which linguistic component is blocking overall advancement.
Instead of reporting the component with the highest error rate, the detector
looks for the ROOT cause: errors cascade through the hierarchy

    Phonology -> Morphology -> Lexical -> Syntactic -> Pragmatic

so a morphology problem (e.g. verb conjugation) also shows up as lexical,
syntactic and pragmatic errors. The earliest component above threshold whose
downstream components are also elevated is reported as the root cause.

Pipeline:
1. Per-component aggregation over the analysis window
2. Cascade scan in fixed hierarchy order
3. Error sub-pattern extraction (see error_patterns)
4. Session co-occurrence of errors
5. Confidence scoring
6. Recommendation text

Fewer than min_responses records is not an error: the analysis reports
insufficient data with zero confidence.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations

from loguru import logger

from src.adaptive.error_patterns import classify_error, format_pattern, summarize_patterns
from src.core.components import CASCADE_ORDER, ComponentType
from src.core.exceptions import MissingReferenceDataError
from src.core.models import LanguageObject, OutcomeRecord, ensure_utc, utc_now

# Share of the (time-sorted) window treated as "older" for recency evidence
RECENT_SPLIT = 0.75
# Data volume at which data confidence saturates
FULL_CONFIDENCE_RESPONSES = 50
MIN_TREND_RESPONSES = 4
TREND_NOTE_MARGIN = 0.05


@dataclass
class BottleneckConfig:
    """Configuration for bottleneck detection."""

    window_days: int = 14
    recent_window_days: int = 7
    min_responses: int = 20
    min_responses_per_component: int = 1
    error_rate_threshold: float = 0.30
    cascade_factor: float = 0.67  # Downstream threshold = factor * error_rate_threshold
    cascade_confidence: float = 0.70
    cascade_boost: float = 0.2
    max_differentiation_boost: float = 0.2

    @classmethod
    def from_settings(cls, settings) -> BottleneckConfig:
        """Build config from the BottleneckSettings config section."""
        return cls(
            window_days=settings.window_days,
            recent_window_days=settings.recent_window_days,
            min_responses=settings.min_responses,
            min_responses_per_component=settings.min_responses_per_component,
            error_rate_threshold=settings.error_rate_threshold,
            cascade_factor=settings.cascade_factor,
            cascade_confidence=settings.cascade_confidence,
        )


@dataclass
class BottleneckEvidence:
    """
    Evidence for a bottleneck in one component.

    Attributes:
        component: The component the evidence describes
        total: Responses observed in the window
        errors: Incorrect responses in the window
        error_rate: errors / total
        recent_error_rate: Error rate in the last quarter of the window (positional split)
        error_patterns: Top (label, count) sub-patterns seen at least twice
        cooccurring_errors: Components that failed in the same sessions (>= 2 sessions)
        improvement: First-half minus second-half error rate; positive = improving
    """

    component: ComponentType
    total: int
    errors: int
    error_rate: float
    recent_error_rate: float = 0.0
    error_patterns: list[tuple[str, int]] = field(default_factory=list)
    cooccurring_errors: list[ComponentType] = field(default_factory=list)
    improvement: float = 0.0

    @property
    def top_pattern(self) -> str | None:
        return self.error_patterns[0][0] if self.error_patterns else None

    def to_dict(self) -> dict:
        return {
            "component": self.component.value,
            "total": self.total,
            "errors": self.errors,
            "error_rate": self.error_rate,
            "recent_error_rate": self.recent_error_rate,
            "error_patterns": [format_pattern(label, n) for label, n in self.error_patterns],
            "cooccurring_errors": [c.value for c in self.cooccurring_errors],
            "improvement": self.improvement,
        }


@dataclass
class CascadeAnalysis:
    """Result of the cascade scan."""

    root_cause: ComponentType | None = None
    cascade_chain: list[ComponentType] = field(default_factory=list)
    confidence: float = 0.0

    @property
    def found(self) -> bool:
        return self.root_cause is not None


@dataclass
class CooccurrencePair:
    """Two components that failed together in the same sessions."""

    components: tuple[ComponentType, ComponentType]
    count: int


@dataclass
class BottleneckAnalysis:
    """Complete bottleneck analysis result."""

    primary_bottleneck: ComponentType | None
    confidence: float
    evidence: list[BottleneckEvidence]
    recommendation: str
    cascade: CascadeAnalysis = field(default_factory=CascadeAnalysis)
    cooccurrence: list[CooccurrencePair] = field(default_factory=list)
    total_responses: int = 0

    @property
    def cascade_chain(self) -> list[ComponentType]:
        return list(self.cascade.cascade_chain)

    @property
    def has_sufficient_data(self) -> bool:
        return bool(self.evidence) or self.primary_bottleneck is not None

    def evidence_for(self, component: ComponentType) -> BottleneckEvidence | None:
        for ev in self.evidence:
            if ev.component == component:
                return ev
        return None

    def to_dict(self) -> dict:
        return {
            "primary_bottleneck": self.primary_bottleneck.value if self.primary_bottleneck else None,
            "cascade_chain": [c.value for c in self.cascade_chain],
            "confidence": self.confidence,
            "evidence": [ev.to_dict() for ev in self.evidence],
            "recommendation": self.recommendation,
            "cooccurrence": [
                {"components": [c.value for c in pair.components], "count": pair.count}
                for pair in self.cooccurrence
            ],
            "total_responses": self.total_responses,
        }


@dataclass
class _ComponentTally:
    total: int = 0
    errors: int = 0
    recent_total: int = 0
    recent_errors: int = 0
    error_records: list[OutcomeRecord] = field(default_factory=list)
    history: list[bool] = field(default_factory=list)


# =============================================================================
# Stateless helpers
# =============================================================================


def improvement_trend(outcomes: list[bool]) -> float:
    """
    First-half minus second-half error rate of a time-ordered history.

    Returns:
        Positive when recent performance is better; 0 with fewer than 4 responses
    """
    if len(outcomes) < MIN_TREND_RESPONSES:
        return 0.0

    midpoint = len(outcomes) // 2
    first, second = outcomes[:midpoint], outcomes[midpoint:]
    first_rate = sum(1 for correct in first if not correct) / len(first)
    second_rate = sum(1 for correct in second if not correct) / len(second)
    return first_rate - second_rate


def session_error_components(records: Iterable[OutcomeRecord]) -> dict[str, set[ComponentType]]:
    """Group error components by originating session."""
    by_session: dict[str, set[ComponentType]] = defaultdict(set)
    for record in records:
        if not record.correct:
            by_session[record.session_id].add(record.component)
    return by_session


def cooccurrence_pairs(records: Iterable[OutcomeRecord], min_count: int = 2) -> list[CooccurrencePair]:
    """
    Count component pairs failing within the same session.

    Returns:
        Pairs seen in at least min_count sessions, most frequent first
    """
    counts: dict[tuple[ComponentType, ComponentType], int] = defaultdict(int)

    for components in session_error_components(records).values():
        ordered = sorted(components, key=lambda c: c.position)
        for pair in combinations(ordered, 2):
            counts[pair] += 1

    pairs = [CooccurrencePair(components=p, count=n) for p, n in counts.items() if n >= min_count]
    pairs.sort(key=lambda p: (-p.count, p.components[0].position, p.components[1].position))
    return pairs


def cooccurring_components(
    target: ComponentType,
    session_errors: Mapping[str, set[ComponentType]],
    min_count: int = 2,
) -> list[ComponentType]:
    """Components failing in the same sessions as target, most frequent first."""
    counts: dict[ComponentType, int] = defaultdict(int)
    for components in session_errors.values():
        if target in components:
            for other in components:
                if other != target:
                    counts[other] += 1

    frequent = [c for c, n in counts.items() if n >= min_count]
    frequent.sort(key=lambda c: (-counts[c], c.position))
    return frequent


def analyze_cascading_errors(
    evidence: list[BottleneckEvidence],
    config: BottleneckConfig | None = None,
) -> CascadeAnalysis:
    """
    Scan the hierarchy for a root cause.

    The first component (in cascade order) at or above threshold with at least
    one elevated downstream component wins; earlier components always take
    priority over later independent spikes.
    """
    config = config or BottleneckConfig()
    by_component = {ev.component: ev for ev in evidence}
    downstream_threshold = config.error_rate_threshold * config.cascade_factor

    for component in CASCADE_ORDER:
        ev = by_component.get(component)
        if ev is None or ev.error_rate < config.error_rate_threshold:
            continue

        downstream = [
            d
            for d in component.downstream()
            if d in by_component and by_component[d].error_rate >= downstream_threshold
        ]
        if downstream:
            return CascadeAnalysis(
                root_cause=component,
                cascade_chain=[component, *downstream],
                confidence=config.cascade_confidence,
            )

    return CascadeAnalysis()


def highest_error_rate(
    evidence: list[BottleneckEvidence],
    config: BottleneckConfig | None = None,
) -> ComponentType | None:
    """Component with the highest error rate at or above threshold (earlier wins ties)."""
    config = config or BottleneckConfig()
    best: BottleneckEvidence | None = None

    for ev in sorted(evidence, key=lambda e: e.component.position):
        if ev.error_rate < config.error_rate_threshold:
            continue
        if best is None or ev.error_rate > best.error_rate:
            best = ev

    return best.component if best else None


def calculate_confidence(
    evidence: list[BottleneckEvidence],
    total_responses: int,
    cascade: CascadeAnalysis,
    config: BottleneckConfig | None = None,
) -> float:
    """
    Overall confidence in an analysis, always within [0, 1].

    confidence = min(1, data + cascade boost + differentiation boost)
    """
    config = config or BottleneckConfig()
    if not evidence:
        return 0.0

    data_confidence = min(1.0, total_responses / FULL_CONFIDENCE_RESPONSES)
    cascade_boost = config.cascade_boost if cascade.found else 0.0

    rates = sorted((ev.error_rate for ev in evidence), reverse=True)
    differentiation = rates[0] - rates[1] if len(rates) >= 2 else 0.0
    differentiation_boost = min(config.max_differentiation_boost, differentiation)

    return max(0.0, min(1.0, data_confidence + cascade_boost + differentiation_boost))


def generate_recommendation(
    bottleneck: ComponentType | None,
    evidence: list[BottleneckEvidence],
    cascade: CascadeAnalysis,
) -> str:
    """Actionable recommendation for addressing the bottleneck."""
    if bottleneck is None:
        return "No significant bottleneck detected. Continue balanced practice across all areas."

    ev = next((e for e in evidence if e.component == bottleneck), None)
    error_rate = round(ev.error_rate * 100) if ev else 0

    parts = [f"Focus on {bottleneck.display_name} ({error_rate}% error rate)."]

    if cascade.root_cause == bottleneck and len(cascade.cascade_chain) > 1:
        downstream = ", ".join(c.short_name for c in cascade.cascade_chain[1:])
        parts.append(f"Improving this will also help with {downstream}.")

    if ev and ev.top_pattern:
        parts.append(f"Specifically practice: {ev.top_pattern}.")

    if ev and ev.improvement > TREND_NOTE_MARGIN:
        parts.append("(Already improving - keep it up!)")
    elif ev and ev.improvement < -TREND_NOTE_MARGIN:
        parts.append("(Needs extra attention - performance declining.)")

    return " ".join(parts)


def summarize_bottleneck(analysis: BottleneckAnalysis) -> str:
    """One-line status for display."""
    if analysis.primary_bottleneck is None:
        return "No bottleneck detected"

    ev = analysis.evidence_for(analysis.primary_bottleneck)
    if ev is None:
        return f"Bottleneck: {analysis.primary_bottleneck.short_name}"
    return f"{analysis.primary_bottleneck.short_name} ({round(ev.error_rate * 100)}% errors)"


# =============================================================================
# Detector
# =============================================================================


class BottleneckDetector:
    """
    Root-cause detector over a window of outcome records.

    Pure function of (records, catalog, now): safe to recompute from scratch
    at any time.
    """

    def __init__(self, config: BottleneckConfig | None = None):
        self.config = config or BottleneckConfig()

    def window(self, records: Iterable[OutcomeRecord], now: datetime | None = None) -> list[OutcomeRecord]:
        """Records inside the analysis window, oldest first."""
        now = ensure_utc(now) or utc_now()
        since = now - timedelta(days=self.config.window_days)
        in_window = [r for r in records if since <= r.timestamp <= now]
        in_window.sort(key=lambda r: r.timestamp)
        return in_window

    def analyze(
        self,
        records: Iterable[OutcomeRecord],
        catalog: Mapping[str, LanguageObject],
        now: datetime | None = None,
    ) -> BottleneckAnalysis:
        """
        Analyze outcome records to detect the learning bottleneck.

        Args:
            records: Outcome records of one learner (any order)
            catalog: Language objects by id, used for pattern content
            now: Reference time for the window (defaults to UTC now)

        Returns:
            BottleneckAnalysis

        Raises:
            MissingReferenceDataError: If a record references an unknown object
        """
        records = list(records)
        for record in records:
            if record.object_id not in catalog:
                raise MissingReferenceDataError(
                    f"Outcome record references unknown object {record.object_id!r}"
                )

        windowed = self.window(records, now)
        total = len(windowed)

        if total < self.config.min_responses:
            return BottleneckAnalysis(
                primary_bottleneck=None,
                confidence=0.0,
                evidence=[],
                recommendation=(
                    f"Insufficient data for analysis ({total}/{self.config.min_responses} responses)."
                ),
                total_responses=total,
            )

        tallies = self._tally(windowed)
        session_errors = session_error_components(windowed)
        evidence = self._build_evidence(tallies, session_errors, catalog)

        cascade = analyze_cascading_errors(evidence, self.config)
        primary = cascade.root_cause or highest_error_rate(evidence, self.config)
        confidence = calculate_confidence(evidence, total, cascade, self.config)
        recommendation = generate_recommendation(primary, evidence, cascade)

        evidence.sort(key=lambda ev: (-ev.error_rate, ev.component.position))

        analysis = BottleneckAnalysis(
            primary_bottleneck=primary,
            confidence=confidence,
            evidence=evidence,
            recommendation=recommendation,
            cascade=cascade,
            cooccurrence=cooccurrence_pairs(windowed),
            total_responses=total,
        )

        logger.info(
            f"Bottleneck analysis over {total} responses: "
            f"{summarize_bottleneck(analysis)} "
            f"(cascade={'yes' if cascade.found else 'no'}, confidence={confidence:.2f})"
        )

        return analysis

    def _tally(self, ordered: list[OutcomeRecord]) -> dict[ComponentType, _ComponentTally]:
        tallies = {c: _ComponentTally() for c in CASCADE_ORDER}
        recent_start = int(len(ordered) * RECENT_SPLIT)

        for i, record in enumerate(ordered):
            tally = tallies[record.component]
            tally.total += 1
            tally.history.append(record.correct)
            if not record.correct:
                tally.errors += 1
                tally.error_records.append(record)
            if i >= recent_start:
                tally.recent_total += 1
                if not record.correct:
                    tally.recent_errors += 1

        return tallies

    def _build_evidence(
        self,
        tallies: dict[ComponentType, _ComponentTally],
        session_errors: Mapping[str, set[ComponentType]],
        catalog: Mapping[str, LanguageObject],
    ) -> list[BottleneckEvidence]:
        evidence = []

        for component in CASCADE_ORDER:
            tally = tallies[component]
            if tally.total == 0 or tally.total < self.config.min_responses_per_component:
                continue

            labels = [
                classify_error(component, catalog[r.object_id].content) for r in tally.error_records
            ]
            evidence.append(
                BottleneckEvidence(
                    component=component,
                    total=tally.total,
                    errors=tally.errors,
                    error_rate=tally.errors / tally.total,
                    recent_error_rate=(
                        tally.recent_errors / tally.recent_total if tally.recent_total else 0.0
                    ),
                    error_patterns=summarize_patterns(labels),
                    cooccurring_errors=cooccurring_components(component, session_errors),
                    improvement=improvement_trend(tally.history),
                )
            )

        return evidence
