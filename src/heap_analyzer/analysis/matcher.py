"""Cross-snapshot matcher: new, removed and grown objects between two captures.

Two passes:

1. Identity: a node whose id appears in both snapshots with the same kind and
   name is the same object. Strictly larger after-sizes become exact
   GrownObject entries. Every id-matched pair is then excluded from pass 2.
2. Shape buckets: the remaining nodes are tallied by ShapeKey. Per shape,
   a higher after-count contributes representative "new" nodes and a lower
   one contributes representative "removed" nodes. Exact per-shape count and
   size deltas are carried in ``shape_deltas`` even when the representative
   lists are capped.
"""

from __future__ import annotations

import logging

from heap_analyzer.analysis.models import (
    DiffResult,
    GrownObject,
    MemoryGrowth,
    NodeRef,
    ShapeDelta,
    ShapeKey,
)
from heap_analyzer.analysis.shapes import (
    DEFAULT_CLASSIFIER,
    ShapeClassifier,
    ShapeTally,
    node_ref,
    shape_census,
)
from heap_analyzer.snapshot.graph import Snapshot

log = logging.getLogger(__name__)

DEFAULT_MAX_REPRESENTATIVES = 100
DEFAULT_MAX_GROWN = 1000


def diff(
    before: Snapshot,
    after: Snapshot,
    *,
    use_identity: bool = True,
    max_representatives: int = DEFAULT_MAX_REPRESENTATIVES,
    max_grown: int = DEFAULT_MAX_GROWN,
    classifier: ShapeClassifier = DEFAULT_CLASSIFIER,
) -> DiffResult:
    """Compare two snapshots of the same program.

    Empty graphs on either side are valid and give a one-sided diff.

    Args:
        before: Earlier capture.
        after: Later capture.
        use_identity: Run the identity pass. When False every node goes
            through the shape-bucket pass.
        max_representatives: Cap on new/removed representative nodes per shape.
        max_grown: Cap on the grown-object list (largest growth kept).
        classifier: Shape rule table to bucket with.
    """
    matched_before = bytearray(before.node_count())
    matched_after = bytearray(after.node_count())
    grown: list[GrownObject] = []
    grown_total = 0

    if use_identity:
        grown, grown_total = _identity_pass(before, after, matched_before, matched_after)

    # Keep enough examples per shape to pick representatives from.
    before_tallies = shape_census(
        before, classifier, skip=matched_before, max_examples=max_representatives,
    )
    after_tallies = shape_census(
        after, classifier, skip=matched_after, max_examples=max_representatives,
    )

    new_objects: list[NodeRef] = []
    removed_objects: list[NodeRef] = []
    deltas: list[ShapeDelta] = []
    new_count = 0
    removed_count = 0

    empty = ShapeTally()
    for key in _ordered_keys(before_tallies, after_tallies):
        b = before_tallies.get(key, empty)
        a = after_tallies.get(key, empty)
        if a.count == b.count and a.total_size == b.total_size:
            continue
        deltas.append(ShapeDelta(
            shape=key,
            before_count=b.count, after_count=a.count,
            before_size=b.total_size, after_size=a.total_size,
        ))
        if a.count > b.count:
            extra = a.count - b.count
            new_count += extra
            new_objects.extend(
                node_ref(after, i) for i in a.example_indices()[:min(extra, max_representatives)]
            )
        elif b.count > a.count:
            missing = b.count - a.count
            removed_count += missing
            removed_objects.extend(
                node_ref(before, i) for i in b.example_indices()[:min(missing, max_representatives)]
            )

    deltas.sort(key=lambda d: (-d.size_delta, -d.count_delta, str(d.shape)))
    grown.sort(key=lambda g: (-g.growth, g.after.index))
    if len(grown) > max_grown:
        log.debug("Capping grown objects at %d (of %d)", max_grown, len(grown))
        del grown[max_grown:]

    result = DiffResult(
        new_objects=new_objects,
        removed_objects=removed_objects,
        grown_objects=grown,
        shape_deltas=deltas,
        memory=MemoryGrowth(
            before_size=before.total_self_size(),
            after_size=after.total_self_size(),
            before_nodes=before.node_count(),
            after_nodes=after.node_count(),
        ),
        new_count=new_count,
        removed_count=removed_count,
    )
    log.info(
        "Diff %s -> %s: %d new, %d removed, %d grown (%d bytes), %d shapes changed",
        before.label or "<before>", after.label or "<after>",
        new_count, removed_count, len(grown), grown_total, len(deltas),
    )
    return result


# ── Helpers ──────────────────────────────────────────────────────────────


def _identity_pass(
    before: Snapshot,
    after: Snapshot,
    matched_before: bytearray,
    matched_after: bytearray,
) -> tuple[list[GrownObject], int]:
    grown: list[GrownObject] = []
    total = 0
    for index in range(after.node_count()):
        prior = before.find_by_id(after.id_of(index))
        if prior is None or matched_before[prior]:
            continue
        # Ids can be reused across unrelated sessions; require the same object type.
        if before.kind_of(prior) != after.kind_of(index) or before.name_of(prior) != after.name_of(index):
            continue
        matched_before[prior] = 1
        matched_after[index] = 1
        before_size = before.self_size_of(prior)
        after_size = after.self_size_of(index)
        if after_size > before_size:
            grown.append(GrownObject(
                before=node_ref(before, prior),
                after=node_ref(after, index),
                before_size=before_size,
                after_size=after_size,
            ))
            total += after_size - before_size
    return grown, total


def _ordered_keys(
    before: dict[ShapeKey, ShapeTally], after: dict[ShapeKey, ShapeTally],
) -> list[ShapeKey]:
    keys = list(after)
    keys.extend(k for k in before if k not in after)
    return keys
