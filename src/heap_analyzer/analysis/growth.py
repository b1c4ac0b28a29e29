"""Growth tracking across an ordered sequence of snapshots.

A GrowthTracker is an explicit, caller-owned session: feed it snapshots in
capture order with ``process_snapshot``, read ``report()``, and ``reset()``
between unrelated runs. It keeps only per-shape counters, never the graphs.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from heap_analyzer.analysis.models import (
    GrowthPattern,
    NodeRef,
    Severity,
    ShapeHistory,
    ShapeKey,
)
from heap_analyzer.analysis.shapes import (
    DEFAULT_CLASSIFIER,
    ShapeClassifier,
    ShapeTally,
    merge_census,
    node_ref,
    shape_census,
)
from heap_analyzer.errors import OutOfOrderSnapshotError
from heap_analyzer.snapshot.graph import Snapshot

log = logging.getLogger(__name__)

MB = 1024 * 1024
DEFAULT_SIGNIFICANT_RATIO = 0.10


def classify_pattern(
    sizes: Sequence[int], significant_ratio: float = DEFAULT_SIGNIFICANT_RATIO,
) -> GrowthPattern:
    """Classify a size series.

    MONOTONIC   -- never decreases and ends above where it started.
    SIGNIFICANT -- ends higher, with at least one rise above ``significant_ratio``
                   of the prior value and no drop of that magnitude.
    FLUCTUATING -- both rises and drops.
    STABLE      -- anything else (flat, shrinking, or too short).
    """
    if len(sizes) < 2:
        return GrowthPattern.STABLE

    rises = drops = 0
    significant_rise = significant_drop = False
    for prev, cur in zip(sizes, sizes[1:]):
        threshold = prev * significant_ratio
        if cur > prev:
            rises += 1
            if cur - prev > threshold:
                significant_rise = True
        elif cur < prev:
            drops += 1
            if prev - cur > threshold:
                significant_drop = True

    net = sizes[-1] - sizes[0]
    if drops == 0 and net > 0:
        return GrowthPattern.MONOTONIC
    if net > 0 and significant_rise and not significant_drop:
        return GrowthPattern.SIGNIFICANT
    if rises and drops:
        return GrowthPattern.FLUCTUATING
    return GrowthPattern.STABLE


def growth_severity(total_growth: int, pattern: GrowthPattern) -> Severity:
    """Absolute growth in bytes, weighted up for monotonic and significant trends."""
    if total_growth > 50 * MB:
        score = 4.0
    elif total_growth > 10 * MB:
        score = 3.0
    elif total_growth > 5 * MB:
        score = 2.0
    elif total_growth > MB:
        score = 1.0
    else:
        score = 0.0

    if pattern is GrowthPattern.MONOTONIC:
        score += 1
    elif pattern is GrowthPattern.SIGNIFICANT:
        score += 0.5

    if score >= 4:
        return Severity.CRITICAL
    if score >= 3:
        return Severity.HIGH
    if score >= 2:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass
class _Track:
    counts: list[int] = field(default_factory=list)
    sizes: list[int] = field(default_factory=list)
    first_seen: int = 0
    last_seen: int = 0
    resolved: bool = False
    examples: list[NodeRef] = field(default_factory=list)


class GrowthTracker:
    """Per-shape count/size histories over chronologically ordered snapshots."""

    def __init__(
        self,
        *,
        significant_change_ratio: float = DEFAULT_SIGNIFICANT_RATIO,
        workers: int = 1,
        classifier: ShapeClassifier = DEFAULT_CLASSIFIER,
    ) -> None:
        self.significant_change_ratio = significant_change_ratio
        self.workers = max(1, workers)
        self.classifier = classifier
        self.reset()

    def reset(self) -> None:
        self._tracks: dict[ShapeKey, _Track] = {}
        self._processed = 0
        self._last_captured: datetime | None = None
        self._labels: list[str] = []

    @property
    def snapshots_processed(self) -> int:
        return self._processed

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def process_snapshot(self, snapshot: Snapshot) -> None:
        """Append one snapshot's shape census to every history.

        Raises:
            OutOfOrderSnapshotError: ``snapshot.captured_at`` is not strictly
                after the previous snapshot. Tracker state is left unchanged.
        """
        if self._last_captured is not None and snapshot.captured_at <= self._last_captured:
            raise OutOfOrderSnapshotError(self._last_captured, snapshot.captured_at)

        # Everything below only reads the census; compute it before touching state.
        census = self._census(snapshot)
        position = self._processed

        for key, tally in census.items():
            track = self._tracks.get(key)
            if track is None:
                track = _Track(first_seen=position)
                self._tracks[key] = track
            elif track.resolved:
                # Reappeared: the gap since it was resolved counts as empty.
                gap = position - (track.first_seen + len(track.sizes))
                track.counts.extend([0] * gap)
                track.sizes.extend([0] * gap)
                track.resolved = False
            track.counts.append(tally.count)
            track.sizes.append(tally.total_size)
            track.last_seen = position
            track.examples = [node_ref(snapshot, i) for i in tally.example_indices()]

        for key, track in self._tracks.items():
            if track.resolved or key in census:
                continue
            # Record the disappearance once, then stop extending the history.
            track.counts.append(0)
            track.sizes.append(0)
            track.resolved = True

        self._processed += 1
        self._last_captured = snapshot.captured_at
        self._labels.append(snapshot.label)
        log.debug(
            "Tracker: snapshot %d (%s) -> %d shapes present, %d tracked",
            position, snapshot.label or "<unnamed>", len(census), len(self._tracks),
        )

    def report(self) -> list[ShapeHistory]:
        """Histories for every shape seen so far, largest growth first."""
        histories = []
        for key, track in self._tracks.items():
            pattern = classify_pattern(track.sizes, self.significant_change_ratio)
            growth = track.sizes[-1] - track.sizes[0] if track.sizes else 0
            histories.append(ShapeHistory(
                shape=key,
                counts=list(track.counts),
                total_sizes=list(track.sizes),
                first_seen=track.first_seen,
                last_seen=track.last_seen,
                pattern=pattern,
                severity=growth_severity(growth, pattern),
                resolved=track.resolved,
                peak_count=max(track.counts, default=0),
                peak_size=max(track.sizes, default=0),
                examples=list(track.examples),
            ))
        histories.sort(key=lambda h: (-h.total_growth, str(h.shape)))
        return histories

    def _census(self, snapshot: Snapshot) -> dict[ShapeKey, ShapeTally]:
        n = snapshot.node_count()
        if self.workers == 1 or n < self.workers * 2:
            return shape_census(snapshot, self.classifier)

        chunk = -(-n // self.workers)
        ranges = [(start, min(start + chunk, n)) for start in range(0, n, chunk)]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            parts = list(pool.map(
                lambda r: shape_census(snapshot, self.classifier, start=r[0], stop=r[1]),
                ranges,
            ))
        return merge_census(parts)


def track_growth(
    snapshots: Iterable[Snapshot],
    *,
    significant_change_ratio: float = DEFAULT_SIGNIFICANT_RATIO,
    workers: int = 1,
    classifier: ShapeClassifier = DEFAULT_CLASSIFIER,
) -> list[ShapeHistory]:
    """Run a fresh tracker over ``snapshots`` (already in capture order)."""
    tracker = GrowthTracker(
        significant_change_ratio=significant_change_ratio,
        workers=workers,
        classifier=classifier,
    )
    for snapshot in snapshots:
        tracker.process_snapshot(snapshot)
    return tracker.report()
