"""
Adaptive Engine.

Components:
- BottleneckDetector: Root-cause analysis over the component cascade
- error_patterns: Pluggable error sub-pattern classifiers
- component_stats: Materialized per-component error statistics and remediation plans
- PriorityRanker: Effective priority and review queue ordering
"""
from src.adaptive.bottleneck_detector import (
    BottleneckAnalysis,
    BottleneckConfig,
    BottleneckDetector,
    BottleneckEvidence,
    CascadeAnalysis,
    summarize_bottleneck,
)
from src.adaptive.component_stats import (
    RemediationStep,
    primary_bottleneck,
    recompute_component_stats,
    remediation_plan,
)
from src.adaptive.error_patterns import PatternRegistry, classify_error, summarize_patterns
from src.adaptive.priority_ranker import (
    PriorityRanker,
    QueueAnalysis,
    analyze_queue,
    apply_irt_reordering,
    fisher_information,
    select_session_items,
    urgency_score,
)

__all__ = [
    # Bottleneck
    "BottleneckAnalysis",
    "BottleneckConfig",
    "BottleneckDetector",
    "BottleneckEvidence",
    "CascadeAnalysis",
    "summarize_bottleneck",
    # Patterns
    "PatternRegistry",
    "classify_error",
    "summarize_patterns",
    # Component stats
    "RemediationStep",
    "primary_bottleneck",
    "recompute_component_stats",
    "remediation_plan",
    # Priority
    "PriorityRanker",
    "QueueAnalysis",
    "analyze_queue",
    "apply_irt_reordering",
    "fisher_information",
    "select_session_items",
    "urgency_score",
]
