"""Decode a serialized heap snapshot into a Snapshot graph.

Input format: a JSON document with a ``snapshot.meta`` descriptor, flat integer
``nodes`` and ``edges`` arrays, and a ``strings`` table. Edges are stored
grouped by owning node, in node order, each node declaring how many it owns
through its ``edge_count`` field. ``to_node`` holds the target's offset into
the flat node array (node index times node record size).
"""

from __future__ import annotations

import json
import logging
from array import array
from datetime import datetime, timezone
from typing import Any, Literal, Mapping

from heap_analyzer.errors import (
    DanglingEdgeWarning,
    ParseError,
    ResourceExceededError,
)
from heap_analyzer.snapshot.diagnostics import DecodeDiagnostics
from heap_analyzer.snapshot.dominators import compute_retained_sizes
from heap_analyzer.snapshot.graph import U64_MAX, Snapshot
from heap_analyzer.snapshot.schema import INDEXED_EDGE_KINDS, SnapshotSchema, parse_schema

log = logging.getLogger(__name__)

RetainedSizeMode = Literal["self", "dominator"]


def decode(
    raw: bytes | bytearray | str,
    *,
    captured_at: datetime | None = None,
    label: str = "",
    max_bytes: int | None = None,
    retained_size: RetainedSizeMode = "self",
) -> Snapshot:
    """Decode raw snapshot bytes.

    Args:
        raw: Serialized snapshot document.
        captured_at: Capture time; defaults to the time of decoding.
        label: Free-form name carried on the Snapshot (usually the file name).
        max_bytes: Full-decode ceiling. Larger inputs raise ResourceExceededError
            before any parsing happens.
        retained_size: "self" keeps retained == self size; "dominator" runs the
            dominator pass.

    Raises:
        ParseError: malformed or truncated input.
        SchemaMismatchError: the descriptor lacks a required field.
        ResourceExceededError: input is above ``max_bytes``.
    """
    size = len(raw)
    if max_bytes is not None and size > max_bytes:
        raise ResourceExceededError(size, max_bytes)

    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise ParseError(f"snapshot is not valid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise ParseError("snapshot document must be a JSON object")

    return decode_document(
        document, captured_at=captured_at, label=label, retained_size=retained_size,
    )


def decode_document(
    document: Mapping[str, Any],
    *,
    captured_at: datetime | None = None,
    label: str = "",
    retained_size: RetainedSizeMode = "self",
) -> Snapshot:
    """Decode an already-parsed snapshot document (see ``decode``)."""
    schema = parse_schema(document)
    nodes = _int_array(document, "nodes")
    edges = _int_array(document, "edges")
    strings = document.get("strings")
    if not isinstance(strings, list):
        raise ParseError("snapshot has no string table", field="strings")
    strings_t = tuple(s if isinstance(s, str) else str(s) for s in strings)

    diagnostics = DecodeDiagnostics()
    node_layout = schema.nodes
    edge_layout = schema.edges
    node_stride = node_layout.stride
    edge_stride = edge_layout.stride

    if len(nodes) % node_stride:
        raise ParseError(
            f"node array length {len(nodes)} is not a multiple of the "
            f"node record size {node_stride}",
            field="nodes", index=len(nodes) // node_stride,
        )
    if len(edges) % edge_stride:
        raise ParseError(
            f"edge array length {len(edges)} is not a multiple of the "
            f"edge record size {edge_stride}",
            field="edges", index=len(edges) // edge_stride,
        )

    node_count = len(nodes) // node_stride
    edge_records = len(edges) // edge_stride

    if schema.declared_node_count is not None and schema.declared_node_count != node_count:
        diagnostics.warnings.append(
            f"descriptor declares {schema.declared_node_count} nodes, found {node_count}"
        )

    # ── Node columns ────────────────────────────────────────────────────
    n_types = len(node_layout.type_names)
    n_strings = len(strings_t)

    kinds = array("i", [0]) * node_count
    for i, value in enumerate(nodes[node_layout.offset("type")::node_stride]):
        if 0 <= value < n_types:
            kinds[i] = value
        else:
            kinds[i] = -1
            diagnostics.unknown_node_types += 1

    names = array("q", [0]) * node_count
    for i, value in enumerate(nodes[node_layout.offset("name")::node_stride]):
        if 0 <= value < n_strings:
            names[i] = value
        else:
            names[i] = -1
            diagnostics.invalid_string_refs += 1

    raw_sizes = nodes[node_layout.offset("self_size")::node_stride]
    negative = sum(1 for value in raw_sizes if value < 0)
    if negative:
        diagnostics.negative_sizes += negative
        raw_sizes = [max(value, 0) for value in raw_sizes]
    self_sizes = _u64_column(raw_sizes, "self_size")

    ids = _u64_column(nodes[node_layout.offset("id")::node_stride], "id")
    edge_counts = nodes[node_layout.offset("edge_count")::node_stride]

    declared_edges = sum(edge_counts)
    if declared_edges != edge_records:
        raise ParseError(
            f"nodes declare {declared_edges} edges but the edge array holds {edge_records}",
            field="edge_count",
        )

    # ── Edge columns (dangling edges dropped here) ──────────────────────
    e_types = len(edge_layout.type_names)
    indexed_kinds = {
        pos for pos, name in enumerate(edge_layout.type_names) if name in INDEXED_EDGE_KINDS
    }
    raw_kinds = edges[edge_layout.offset("type")::edge_stride]
    raw_labels = edges[edge_layout.offset("name_or_index")::edge_stride]
    raw_targets = edges[edge_layout.offset("to_node")::edge_stride]

    edge_kinds = array("i")
    edge_labels = array("q")
    edge_from = array("q")
    edge_to = array("q")

    cursor = 0
    for owner, owned in enumerate(edge_counts):
        if owned < 0:
            raise ParseError("negative edge_count", field="edge_count", index=owner)
        for position in range(cursor, cursor + owned):
            target_raw = raw_targets[position]
            target, remainder = divmod(target_raw, node_stride)
            if remainder or not 0 <= target < node_count:
                diagnostics.record_dangling(DanglingEdgeWarning(
                    edge_index=position,
                    from_node=owner,
                    to_node_raw=target_raw,
                    reason="misaligned" if remainder else "out_of_range",
                ))
                continue

            kind = raw_kinds[position]
            name_or_index = raw_labels[position]
            if not 0 <= kind < e_types:
                diagnostics.unknown_edge_types += 1
                kind = -1
            elif kind not in indexed_kinds and not 0 <= name_or_index < n_strings:
                diagnostics.invalid_string_refs += 1

            edge_kinds.append(kind)
            try:
                edge_labels.append(name_or_index)
            except OverflowError:
                raise ParseError(
                    f"edge label {name_or_index} is outside the signed 64-bit range",
                    field="name_or_index", index=position,
                ) from None
            edge_from.append(owner)
            edge_to.append(target)
        cursor += owned

    snapshot = Snapshot(
        node_ids=ids,
        node_kinds=kinds,
        node_names=names,
        node_self_sizes=self_sizes,
        node_kind_names=node_layout.type_names,
        edge_kinds=edge_kinds,
        edge_labels=edge_labels,
        edge_from=edge_from,
        edge_to=edge_to,
        edge_kind_names=edge_layout.type_names,
        indexed_edge_kinds=INDEXED_EDGE_KINDS,
        strings=strings_t,
        captured_at=_as_utc(captured_at),
        label=label,
        diagnostics=diagnostics,
    )

    if retained_size == "dominator":
        snapshot._install_retained_sizes(compute_retained_sizes(snapshot))
    elif node_layout.has("retained_size"):
        snapshot._install_retained_sizes(_u64_column(
            [max(v, 0) for v in nodes[node_layout.offset("retained_size")::node_stride]],
            "retained_size",
        ))

    log.info(
        "Decoded snapshot %s: %d nodes, %d edges, %d strings",
        label or "<unnamed>", snapshot.node_count(), snapshot.edge_count(), n_strings,
    )
    if diagnostics.has_anomalies:
        log.warning("Snapshot %s decoded with warnings: %s",
                    label or "<unnamed>", "; ".join(diagnostics.summary()))

    return snapshot


def _u64_column(values: list[int], field: str) -> array:
    try:
        return array("Q", values)
    except OverflowError:
        index = next(i for i, v in enumerate(values) if not 0 <= v <= U64_MAX)
        raise ParseError(
            f"'{field}' value {values[index]} is outside the unsigned 64-bit range",
            field=field, index=index,
        ) from None


def _int_array(document: Mapping[str, Any], key: str) -> list[int]:
    values = document.get(key)
    if not isinstance(values, list):
        raise ParseError(f"snapshot has no '{key}' array", field=key)
    for position, value in enumerate(values):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ParseError(f"non-integer value {value!r} in '{key}'", field=key, index=position)
    return values


def _as_utc(captured_at: datetime | None) -> datetime:
    # Naive timestamps are taken as UTC so every Snapshot compares with every other.
    if captured_at is None:
        return datetime.now(timezone.utc)
    if captured_at.tzinfo is None:
        return captured_at.replace(tzinfo=timezone.utc)
    return captured_at
