"""Snapshot: the immutable, read-only object graph of one heap capture.

Node and edge columns are held in compact ``array`` buffers owned by the
Snapshot. Everything else in the package reads through the accessors here and
keeps only small derived aggregates. The forward adjacency, reverse adjacency
and id lookup indexes are built lazily, once, on first use.
"""

from __future__ import annotations

from array import array
from datetime import datetime
from typing import Iterator

from heap_analyzer.snapshot.diagnostics import DecodeDiagnostics
from heap_analyzer.snapshot.nodes import Edge, Node

UNKNOWN_KIND = "unknown"
U64_MAX = 2**64 - 1


class Snapshot:
    """Decoded heap graph with O(1) node access by index."""

    def __init__(
        self,
        *,
        node_ids: array,
        node_kinds: array,
        node_names: array,
        node_self_sizes: array,
        node_kind_names: tuple[str, ...],
        edge_kinds: array,
        edge_labels: array,
        edge_from: array,
        edge_to: array,
        edge_kind_names: tuple[str, ...],
        indexed_edge_kinds: frozenset[str],
        strings: tuple[str, ...],
        captured_at: datetime,
        label: str = "",
        diagnostics: DecodeDiagnostics | None = None,
        node_retained_sizes: array | None = None,
    ) -> None:
        self._ids = node_ids
        self._kinds = node_kinds
        self._names = node_names
        self._self = node_self_sizes
        self._retained = node_retained_sizes
        self._kind_names = node_kind_names

        self._edge_kinds = edge_kinds
        self._edge_labels = edge_labels
        self._edge_from = edge_from
        self._edge_to = edge_to
        self._edge_kind_names = edge_kind_names
        self._indexed_edge = tuple(name in indexed_edge_kinds for name in edge_kind_names)

        self._strings = strings
        self.captured_at = captured_at
        self.label = label
        self.diagnostics = diagnostics or DecodeDiagnostics()

        # Lazily built derived indexes
        self._fwd_offsets: array | None = None
        self._rev_offsets: array | None = None
        self._rev_edges: array | None = None
        self._id_index: dict[int, int] | None = None
        self._total_self: int | None = None

    # ── Sizes ───────────────────────────────────────────────────────────

    def node_count(self) -> int:
        return len(self._ids)

    def edge_count(self) -> int:
        return len(self._edge_to)

    def __len__(self) -> int:
        return len(self._ids)

    def total_self_size(self) -> int:
        if self._total_self is None:
            self._total_self = sum(self._self)
        return self._total_self

    @property
    def retained_is_approximate(self) -> bool:
        """True while retained sizes are the self-size approximation."""
        return self._retained is None

    @property
    def strings(self) -> tuple[str, ...]:
        return self._strings

    # ── Node columns ────────────────────────────────────────────────────

    def kind_of(self, index: int) -> str:
        value = self._kinds[index]
        if value < 0:
            return UNKNOWN_KIND
        return self._kind_names[value]

    def name_of(self, index: int) -> str:
        ref = self._names[index]
        if ref < 0:
            return ""
        return self._strings[ref]

    def id_of(self, index: int) -> int:
        return self._ids[index]

    def self_size_of(self, index: int) -> int:
        return self._self[index]

    def retained_size_of(self, index: int) -> int:
        if self._retained is None:
            return self._self[index]
        return self._retained[index]

    def node_at(self, index: int) -> Node:
        if not 0 <= index < len(self._ids):
            raise IndexError(f"node index {index} out of range (0..{len(self._ids) - 1})")
        return Node(
            index=index,
            id=self._ids[index],
            kind=self.kind_of(index),
            name=self.name_of(index),
            self_size=self._self[index],
            retained_size=self.retained_size_of(index),
        )

    def iter_nodes(self, start: int = 0, stop: int | None = None) -> Iterator[Node]:
        stop = len(self._ids) if stop is None else min(stop, len(self._ids))
        for index in range(max(start, 0), stop):
            yield self.node_at(index)

    def find_by_id(self, node_id: int) -> int | None:
        """Return the index of the node carrying ``node_id``, if any."""
        if self._id_index is None:
            index: dict[int, int] = {}
            for pos, value in enumerate(self._ids):
                index.setdefault(value, pos)
            self._id_index = index
        return self._id_index.get(node_id)

    # ── Edges ───────────────────────────────────────────────────────────

    def edge_at(self, position: int) -> Edge:
        kind_value = self._edge_kinds[position]
        if kind_value < 0:
            kind = UNKNOWN_KIND
            indexed = False
        else:
            kind = self._edge_kind_names[kind_value]
            indexed = self._indexed_edge[kind_value]

        raw = self._edge_labels[position]
        label: str | int
        if indexed:
            label = raw
        elif 0 <= raw < len(self._strings):
            label = self._strings[raw]
        else:
            label = str(raw)

        return Edge(
            kind=kind,
            label=label,
            from_node=self._edge_from[position],
            to_node=self._edge_to[position],
        )

    def edge_kind_of(self, position: int) -> str:
        value = self._edge_kinds[position]
        return UNKNOWN_KIND if value < 0 else self._edge_kind_names[value]

    def edges_from(self, index: int) -> list[Edge]:
        """Outgoing edges of a node (forward adjacency built on first call)."""
        offsets = self._forward_offsets()
        return [self.edge_at(pos) for pos in range(offsets[index], offsets[index + 1])]

    def edges_to(self, index: int) -> list[Edge]:
        """Incoming edges of a node (reverse adjacency built on first call)."""
        return [self.edge_at(pos) for pos in self.incoming_positions(index)]

    def incoming_positions(self, index: int) -> array:
        """Edge positions pointing at ``index``, without materializing Edges."""
        offsets, positions = self._reverse_index()
        return positions[offsets[index]:offsets[index + 1]]

    def outgoing_positions(self, index: int) -> range:
        offsets = self._forward_offsets()
        return range(offsets[index], offsets[index + 1])

    def edge_from_of(self, position: int) -> int:
        return self._edge_from[position]

    def edge_to_of(self, position: int) -> int:
        return self._edge_to[position]

    def _forward_offsets(self) -> array:
        if self._fwd_offsets is None:
            counts = array("q", bytes(8 * (len(self._ids) + 1)))
            for src in self._edge_from:
                counts[src + 1] += 1
            for i in range(1, len(counts)):
                counts[i] += counts[i - 1]
            self._fwd_offsets = counts
        return self._fwd_offsets

    def _reverse_index(self) -> tuple[array, array]:
        if self._rev_offsets is None or self._rev_edges is None:
            n = len(self._ids)
            offsets = array("q", bytes(8 * (n + 1)))
            for dst in self._edge_to:
                offsets[dst + 1] += 1
            for i in range(1, n + 1):
                offsets[i] += offsets[i - 1]
            cursor = array("q", offsets[:n]) if n else array("q")
            positions = array("q", bytes(8 * len(self._edge_to)))
            for pos, dst in enumerate(self._edge_to):
                positions[cursor[dst]] = pos
                cursor[dst] += 1
            self._rev_offsets = offsets
            self._rev_edges = positions
        return self._rev_offsets, self._rev_edges

    # Decode-time only: installs the result of the dominator pass before the
    # Snapshot is handed to callers.
    def _install_retained_sizes(self, sizes: array) -> None:
        if len(sizes) != len(self._ids):
            raise ValueError("retained size column does not match node count")
        self._retained = sizes

    def __repr__(self) -> str:
        return (
            f"Snapshot(label={self.label!r}, nodes={self.node_count()}, "
            f"edges={self.edge_count()}, captured_at={self.captured_at.isoformat()})"
        )
