"""Analysis over decoded snapshots.

Provides:
    classify(node) -> (NodeCategory, ShapeKey)
    diff(before, after) -> DiffResult
    GrowthTracker / track_growth(snapshots) -> list[ShapeHistory]
    explain(node, graph, budget) -> list[EdgeLabel]
    classify_leaks(diff, growth) -> list[LeakHypothesis]
"""

from __future__ import annotations

from heap_analyzer.analysis.enrichment import MemlabTraceEnricher, TraceEnricher
from heap_analyzer.analysis.growth import GrowthTracker, classify_pattern, track_growth
from heap_analyzer.analysis.hypotheses import classify_leaks, summarize
from heap_analyzer.analysis.keywords import scan_keywords
from heap_analyzer.analysis.matcher import diff
from heap_analyzer.analysis.retainers import RetainerBudget, explain, resolve_retainers
from heap_analyzer.analysis.shapes import SHAPE_RULES, ShapeClassifier, ShapeRule, classify

__all__ = [
    "classify",
    "classify_leaks",
    "classify_pattern",
    "diff",
    "explain",
    "GrowthTracker",
    "MemlabTraceEnricher",
    "resolve_retainers",
    "RetainerBudget",
    "scan_keywords",
    "SHAPE_RULES",
    "ShapeClassifier",
    "ShapeRule",
    "summarize",
    "TraceEnricher",
    "track_growth",
]
