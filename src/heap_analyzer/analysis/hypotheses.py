"""Leak hypothesis engine: turns diff + growth statistics into ranked hypotheses.

Confidence is a sum of independent signals, clamped to 0..95 because every
input is heuristic:

    size      absolute growth estimate (bytes)
    pattern   MONOTONIC > SIGNIFICANT > FLUCTUATING > STABLE
    category  prior for leak-prone shapes (collections, arrays, DOM first)
    count     how many extra instances appeared
    keywords  string-table signals (timers, listeners, containers)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from heap_analyzer.analysis.models import (
    DiffResult,
    GrowthPattern,
    KeywordSignals,
    LeakCategory,
    LeakHypothesis,
    LeakSummary,
    NodeCategory,
    NodeRef,
    RetainerHint,
    ShapeHistory,
    ShapeKey,
)
from heap_analyzer.analysis.shapes import DEFAULT_CLASSIFIER, ShapeClassifier

log = logging.getLogger(__name__)

KB = 1024
MB = 1024 * KB

MAX_CONFIDENCE = 95
DEFAULT_TOP_N = 20
DEFAULT_MIN_CONFIDENCE = 20
MAX_AFFECTED_NODES = 5

SIZE_POINTS: tuple[tuple[int, int], ...] = (
    (5 * MB, 35),
    (MB, 25),
    (100 * KB, 15),
    (10 * KB, 8),
    (0, 3),
)

PATTERN_POINTS: dict[GrowthPattern | None, int] = {
    GrowthPattern.MONOTONIC: 25,
    GrowthPattern.SIGNIFICANT: 15,
    GrowthPattern.FLUCTUATING: 5,
    GrowthPattern.STABLE: 0,
    None: 10,       # seen only in the pairwise diff
}

CATEGORY_PRIORS: dict[NodeCategory, int] = {
    NodeCategory.COLLECTION: 15,
    NodeCategory.ARRAY: 15,
    NodeCategory.DOM: 15,
    NodeCategory.TIMER: 12,
    NodeCategory.CLOSURE: 10,
    NodeCategory.ASYNC: 8,
    NodeCategory.BINARY: 8,
    NodeCategory.STRING: 5,
    NodeCategory.OBJECT: 3,
}

KEYWORD_GROUP_FOR: dict[LeakCategory, str] = {
    LeakCategory.TIMER: "timers",
    LeakCategory.EVENT_LISTENER: "listeners",
    LeakCategory.CLOSURE: "listeners",
    LeakCategory.COLLECTION_GROWTH: "containers",
    LeakCategory.DETACHED_DOM: "leaks",
}
# Categories without a dedicated group score on generic leak terms.
FALLBACK_KEYWORD_GROUP = "leaks"

GLOBAL_RETAINER_MARKERS = ("Window", "global", "document")
GLOBAL_RETAINER_BONUS = 10

REMEDIATION: dict[LeakCategory, tuple[str, str]] = {
    LeakCategory.COLLECTION_GROWTH: (
        "Collection keeps accumulating entries between snapshots",
        "Bound the collection (LRU/TTL eviction) or delete entries when their owner goes away; "
        "use WeakMap/WeakSet for object-keyed caches",
    ),
    LeakCategory.DETACHED_DOM: (
        "DOM nodes are retained after being removed from the document",
        "Drop JavaScript references to removed elements and clear element caches on unmount",
    ),
    LeakCategory.EVENT_LISTENER: (
        "Listener closures accumulate without being removed",
        "Pair every addEventListener/on() with removeEventListener/off() or use an AbortController",
    ),
    LeakCategory.CLOSURE: (
        "Closures keep growing, holding their captured scope alive",
        "Avoid capturing large objects in long-lived callbacks; release callbacks when done",
    ),
    LeakCategory.TIMER: (
        "Timer handles accumulate, keeping their callbacks and scopes alive",
        "Clear intervals and timeouts with clearInterval/clearTimeout when the owner is disposed",
    ),
    LeakCategory.UNRESOLVED_PROMISE: (
        "Pending promises or async frames accumulate",
        "Make sure promises settle (timeouts, cancellation) and are not chained indefinitely",
    ),
    LeakCategory.STRING_ACCUMULATION: (
        "String data keeps accumulating",
        "Check logs, string buffers and caches that append without truncation",
    ),
    LeakCategory.DATA_BUFFER: (
        "Binary buffers keep accumulating",
        "Release ArrayBuffer/Buffer references after use and bound any buffer pools",
    ),
    LeakCategory.OBJECT_GROWTH: (
        "Objects of this shape keep accumulating",
        "Review the lifecycle of these objects and who keeps references to them",
    ),
}

_LISTENER_MARKERS = ("listener", "Listener", "handler", "Handler")


def leak_category_for(shape: ShapeKey) -> LeakCategory:
    category = shape.category
    if category in (NodeCategory.ARRAY, NodeCategory.COLLECTION):
        return LeakCategory.COLLECTION_GROWTH
    if category is NodeCategory.DOM:
        return LeakCategory.DETACHED_DOM
    if category is NodeCategory.CLOSURE:
        if any(marker in shape.name for marker in _LISTENER_MARKERS):
            return LeakCategory.EVENT_LISTENER
        return LeakCategory.CLOSURE
    if category is NodeCategory.TIMER:
        return LeakCategory.TIMER
    if category is NodeCategory.ASYNC:
        return LeakCategory.UNRESOLVED_PROMISE
    if category is NodeCategory.STRING:
        return LeakCategory.STRING_ACCUMULATION
    if category is NodeCategory.BINARY:
        return LeakCategory.DATA_BUFFER
    return LeakCategory.OBJECT_GROWTH


# ── Candidate aggregation ───────────────────────────────────────────────


@dataclass
class _Candidate:
    shape: ShapeKey
    history_growth: int = 0
    diff_growth: int = 0
    count: int = 0
    pattern: GrowthPattern | None = None
    affected: list[NodeRef] = field(default_factory=list)

    @property
    def estimate(self) -> int:
        return max(self.history_growth, self.diff_growth)

    def add_affected(self, refs: list[NodeRef]) -> None:
        seen = {(r.index, r.id) for r in self.affected}
        for ref in refs:
            if len(self.affected) >= MAX_AFFECTED_NODES:
                break
            if (ref.index, ref.id) not in seen:
                self.affected.append(ref)
                seen.add((ref.index, ref.id))


def _collect_candidates(
    diff: DiffResult | None,
    growth: list[ShapeHistory],
    classifier: ShapeClassifier,
) -> dict[ShapeKey, _Candidate]:
    candidates: dict[ShapeKey, _Candidate] = {}

    def candidate(shape: ShapeKey) -> _Candidate:
        if shape not in candidates:
            candidates[shape] = _Candidate(shape=shape)
        return candidates[shape]

    for history in growth:
        if history.resolved or history.total_growth <= 0:
            continue
        if history.shape.category is NodeCategory.SYSTEM:
            continue
        c = candidate(history.shape)
        c.history_growth = history.total_growth
        c.count = max(c.count, history.count_growth)
        c.pattern = history.pattern
        c.add_affected(history.examples)

    if diff is not None:
        new_by_shape: dict[ShapeKey, list[NodeRef]] = {}
        for ref in diff.new_objects:
            new_by_shape.setdefault(classifier.classify(ref)[1], []).append(ref)

        for delta in diff.shape_deltas:
            if delta.size_delta <= 0 or delta.shape.category is NodeCategory.SYSTEM:
                continue
            c = candidate(delta.shape)
            c.diff_growth += delta.size_delta
            c.count = max(c.count, delta.count_delta)
            c.add_affected(new_by_shape.get(delta.shape, []))

        for grown in diff.grown_objects:
            _, shape = classifier.classify(grown.after)
            if shape.category is NodeCategory.SYSTEM:
                continue
            c = candidate(shape)
            c.diff_growth += grown.growth
            c.add_affected([grown.after])

    return candidates


# ── Scoring ─────────────────────────────────────────────────────────────


def _size_points(estimate: int) -> int:
    for threshold, points in SIZE_POINTS:
        if estimate > threshold:
            return points
    return 0


def _count_points(count: int) -> int:
    if count > 1000:
        return 10
    if count > 100:
        return 5
    return 0


def _keyword_points(category: LeakCategory, keywords: KeywordSignals | None) -> tuple[int, str | None]:
    if keywords is None:
        return 0, None
    group = KEYWORD_GROUP_FOR.get(category, FALLBACK_KEYWORD_GROUP)
    hits = keywords.hits(group)
    if hits > 100:
        return 10, f"{hits} '{group}' strings in the heap"
    if hits > 0:
        return 5, f"{hits} '{group}' strings in the heap"
    return 0, None


def score_candidate(
    shape: ShapeKey,
    estimate: int,
    pattern: GrowthPattern | None,
    count: int,
    keywords: KeywordSignals | None = None,
) -> tuple[int, list[str]]:
    """Confidence (0..95) plus the human-readable signals behind it."""
    category = leak_category_for(shape)
    signals: list[str] = []

    score = _size_points(estimate)
    score += PATTERN_POINTS.get(pattern, 0)
    if pattern is not None:
        signals.append(f"{pattern.value} growth")
    score += CATEGORY_PRIORS.get(shape.category, 0)

    count_points = _count_points(count)
    if count_points:
        signals.append(f"{count} additional instances")
    score += count_points

    keyword_points, keyword_signal = _keyword_points(category, keywords)
    if keyword_signal:
        signals.append(keyword_signal)
    score += keyword_points

    return max(0, min(MAX_CONFIDENCE, score)), signals


def classify_leaks(
    diff: DiffResult | None,
    growth: list[ShapeHistory],
    *,
    keywords: KeywordSignals | None = None,
    top_n: int = DEFAULT_TOP_N,
    min_confidence: int = DEFAULT_MIN_CONFIDENCE,
    classifier: ShapeClassifier = DEFAULT_CLASSIFIER,
) -> list[LeakHypothesis]:
    """Score, deduplicate and rank leak hypotheses.

    Args:
        diff: Pairwise diff (usually first vs last snapshot), or None.
        growth: Shape histories from a GrowthTracker.
        keywords: Optional string-table signals.
        top_n: Maximum number of hypotheses returned.
        min_confidence: Hypotheses below this confidence are dropped.
    """
    candidates = _collect_candidates(diff, growth, classifier)

    by_key: dict[tuple[LeakCategory, ShapeKey], LeakHypothesis] = {}
    for shape, c in candidates.items():
        estimate = c.estimate
        if estimate <= 0:
            continue
        category = leak_category_for(shape)
        confidence, signals = score_candidate(shape, estimate, c.pattern, c.count, keywords)
        if confidence < min_confidence:
            continue
        description, fix = REMEDIATION[category]
        hypothesis = LeakHypothesis(
            category=category,
            confidence=confidence,
            retained_size_estimate=estimate,
            shape=shape,
            affected_nodes=list(c.affected),
            affected_count=max(c.count, 0),
            pattern=c.pattern,
            description=f"{description}: {shape}",
            suggested_fix=fix,
            signals=signals,
        )
        existing = by_key.get((category, shape))
        if existing is None or hypothesis.rank_score > existing.rank_score:
            by_key[(category, shape)] = hypothesis

    ranked = rank_hypotheses(list(by_key.values()))[:top_n]
    log.info(
        "Leak hypotheses: %d candidates, %d above confidence %d, returning %d",
        len(candidates), len(by_key), min_confidence, len(ranked),
    )
    return ranked


def rank_hypotheses(hypotheses: list[LeakHypothesis]) -> list[LeakHypothesis]:
    return sorted(
        hypotheses,
        key=lambda h: (-h.rank_score, -h.confidence, -h.retained_size_estimate, str(h.shape)),
    )


def attach_retainers(hypothesis: LeakHypothesis, hints: list[RetainerHint]) -> LeakHypothesis:
    """Copy of ``hypothesis`` carrying retainer hints; global-scope retainers raise confidence."""
    confidence = hypothesis.confidence
    signals = list(hypothesis.signals)
    if any(marker in hint.path for hint in hints for marker in GLOBAL_RETAINER_MARKERS):
        confidence = min(MAX_CONFIDENCE, confidence + GLOBAL_RETAINER_BONUS)
        signals.append("retained from global scope")
    return hypothesis.model_copy(update={
        "retainers": list(hints),
        "confidence": confidence,
        "signals": signals,
    })


# ── Summary ─────────────────────────────────────────────────────────────


def summarize(diff: DiffResult | None, hypotheses: list[LeakHypothesis]) -> LeakSummary:
    """Overall verdict, primary concerns and recommendations."""
    high = [h for h in hypotheses if h.confidence > 70]
    medium = [h for h in hypotheses if 40 <= h.confidence <= 70]
    low = [h for h in hypotheses if h.confidence < 40]

    growth = diff.memory.growth if diff is not None else 0
    growth_percent = diff.memory.growth_percent if diff is not None else 0.0
    new_count = diff.new_count if diff is not None else 0
    new_size = sum(d.size_delta for d in diff.shape_deltas if d.size_delta > 0) if diff else 0

    if high or growth_percent > 50:
        verdict = "high"
    elif hypotheses or growth_percent > 20:
        verdict = "medium"
    else:
        verdict = "low"

    concerns: list[str] = []
    recommendations: list[str] = []
    if growth > 5 * MB:
        concerns.append(f"Large memory growth: {growth / MB:.1f}MB")
    if hypotheses:
        concerns.append(f"{len(hypotheses)} potential leak sources detected")
        recommendations.append("Focus on the highest confidence leaks first")
    if new_count > 100:
        concerns.append(f"{new_count} new objects created")
        recommendations.append("Review object lifecycle and cleanup patterns")
    if new_size > 10 * MB:
        concerns.append(f"{new_size / MB:.1f}MB of new objects created")
        recommendations.append("Large amount of new memory allocated - check for memory retention")
    for h in high[:3]:
        recommendations.append(h.suggested_fix)

    if not recommendations:
        if verdict == "low":
            recommendations.append("Memory usage appears stable - no immediate action needed")
        else:
            recommendations.append("Monitor memory usage patterns and repeat analysis")

    return LeakSummary(
        leak_confidence=verdict,
        total_growth=growth,
        high_confidence=len(high),
        medium_confidence=len(medium),
        low_confidence=len(low),
        primary_concerns=concerns,
        recommendations=recommendations,
    )
