"""Bounded retainer hints: why is this node still reachable?

A breadth-first walk over *incoming* edges from the target. The walk stops at
the first root-like ancestor or when the budget runs out (depth, nodes visited,
or wall-clock time), checked at every visited node. The returned chain is a
hint for a human, not a proof of GC-root reachability.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable

from pydantic import BaseModel, Field

from heap_analyzer.analysis.models import EdgeLabel, NodeRef, RetainerHint
from heap_analyzer.analysis.shapes import node_ref
from heap_analyzer.snapshot.graph import Snapshot

log = logging.getLogger(__name__)

NON_RETAINING_EDGE_KINDS = frozenset({"weak"})
ROOT_KINDS = frozenset({"synthetic"})


class RetainerBudget(BaseModel):
    max_depth: int = Field(default=8, ge=1)
    max_nodes_visited: int = Field(default=10_000, ge=1)
    time_budget_ms: float = Field(default=50, gt=0)


def explain(
    node: NodeRef | int,
    graph: Snapshot,
    budget: RetainerBudget | None = None,
) -> list[EdgeLabel]:
    """Edge labels from some retaining ancestor down to ``node``, ancestor first."""
    return resolve_retainers(node, graph, budget).chain


def resolve_retainers(
    node: NodeRef | int,
    graph: Snapshot,
    budget: RetainerBudget | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> RetainerHint:
    """Like ``explain`` but also reports whether a root was reached and why the walk stopped."""
    budget = budget or RetainerBudget()
    target = _resolve_index(node, graph)
    deadline = clock() + budget.time_budget_ms / 1000.0

    # parent[n] = edge position n -> (toward target)
    parent: dict[int, int] = {}
    depth_of = {target: 0}
    queue = deque([target])
    visited = 0
    truncated_by: str | None = None
    found: int | None = None
    deepest = target

    while queue:
        current = queue.popleft()
        visited += 1
        if visited > budget.max_nodes_visited:
            truncated_by = "nodes"
            break
        if clock() > deadline:
            truncated_by = "time"
            break

        depth = depth_of[current]
        if depth > depth_of[deepest]:
            deepest = current

        retainers = _retaining_positions(graph, current)
        if current != target and (not retainers or graph.kind_of(current) in ROOT_KINDS):
            found = current
            break

        if depth >= budget.max_depth:
            if retainers and truncated_by is None:
                truncated_by = "depth"
            continue

        for pos in retainers:
            source = graph.edge_from_of(pos)
            if source in depth_of:
                continue
            depth_of[source] = depth + 1
            parent[source] = pos
            queue.append(source)

    if found is None and target_is_root(graph, target):
        return RetainerHint(
            target=node_ref(graph, target), reached_root=True, nodes_visited=visited,
        )

    endpoint = found if found is not None else deepest
    chain: list[EdgeLabel] = []
    cursor = endpoint
    while cursor != target:
        pos = parent[cursor]
        edge = graph.edge_at(pos)
        chain.append(EdgeLabel(
            kind=edge.kind,
            label=edge.describe(),
            from_node=node_ref(graph, edge.from_node),
            to_node=node_ref(graph, edge.to_node),
        ))
        cursor = edge.to_node

    if found is not None:
        truncated_by = None
    log.debug(
        "Retainers for node %d: %d hops, visited %d, root=%s, truncated_by=%s",
        target, len(chain), visited, found is not None, truncated_by,
    )
    return RetainerHint(
        target=node_ref(graph, target),
        chain=chain,
        reached_root=found is not None,
        truncated_by=truncated_by,
        nodes_visited=visited,
    )


def target_is_root(graph: Snapshot, index: int) -> bool:
    return graph.kind_of(index) in ROOT_KINDS or not _retaining_positions(graph, index)


def _retaining_positions(graph: Snapshot, index: int) -> list[int]:
    return [
        pos for pos in graph.incoming_positions(index)
        if graph.edge_kind_of(pos) not in NON_RETAINING_EDGE_KINDS
        and graph.edge_from_of(pos) != index
    ]


def _resolve_index(node: NodeRef | int, graph: Snapshot) -> int:
    if isinstance(node, int):
        if not 0 <= node < graph.node_count():
            raise IndexError(f"node index {node} out of range")
        return node
    # NodeRef indexes are snapshot-local; fall back to the id for refs from another capture.
    if 0 <= node.index < graph.node_count() and graph.id_of(node.index) == node.id:
        return node.index
    index = graph.find_by_id(node.id)
    if index is None:
        raise LookupError(f"node id {node.id} not present in snapshot {graph.label or '<unnamed>'}")
    return index
