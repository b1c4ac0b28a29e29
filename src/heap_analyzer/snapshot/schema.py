"""Self-describing snapshot layout: field offsets and type enumerations.

A heap snapshot declares the order of the fields in its node and edge records
(``snapshot.meta.node_fields`` / ``edge_fields``) and the names behind the
enumerated ``type`` field (``node_types`` / ``edge_types``). Producers reorder
and extend these lists between versions, so every offset is looked up by name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from heap_analyzer.errors import SchemaMismatchError

REQUIRED_NODE_FIELDS = ("type", "name", "id", "self_size", "edge_count")
REQUIRED_EDGE_FIELDS = ("type", "name_or_index", "to_node")

# Edge kinds whose name_or_index is a numeric element index rather than a
# string-table reference.
INDEXED_EDGE_KINDS = frozenset({"element", "hidden"})


@dataclass(frozen=True)
class RecordLayout:
    """Field layout of one record type (nodes or edges)."""
    record: str                          # "node" | "edge"
    fields: tuple[str, ...]
    type_names: tuple[str, ...]
    offsets: dict[str, int] = field(default_factory=dict)

    @property
    def stride(self) -> int:
        return len(self.fields)

    def has(self, name: str) -> bool:
        return name in self.offsets

    def offset(self, name: str) -> int:
        try:
            return self.offsets[name]
        except KeyError:
            raise SchemaMismatchError(
                f"{self.record} layout does not declare '{name}'", field=name,
            ) from None

    def type_name(self, value: int) -> str | None:
        """Resolve an enumerated type value, or None when out of range."""
        if 0 <= value < len(self.type_names):
            return self.type_names[value]
        return None


@dataclass(frozen=True)
class SnapshotSchema:
    nodes: RecordLayout
    edges: RecordLayout
    declared_node_count: int | None = None
    declared_edge_count: int | None = None


def parse_schema(document: Mapping[str, Any]) -> SnapshotSchema:
    """Read the descriptor embedded in a decoded snapshot document.

    Raises:
        SchemaMismatchError: a field list, an enumeration table, or a
            required field name is missing.
    """
    header = document.get("snapshot")
    if not isinstance(header, Mapping):
        raise SchemaMismatchError("snapshot descriptor is missing", field="snapshot")
    meta = header.get("meta")
    if not isinstance(meta, Mapping):
        raise SchemaMismatchError("snapshot descriptor has no meta section", field="snapshot.meta")

    nodes = _layout(meta, "node", REQUIRED_NODE_FIELDS)
    edges = _layout(meta, "edge", REQUIRED_EDGE_FIELDS)

    return SnapshotSchema(
        nodes=nodes,
        edges=edges,
        declared_node_count=_optional_int(header.get("node_count")),
        declared_edge_count=_optional_int(header.get("edge_count")),
    )


def _layout(meta: Mapping[str, Any], record: str, required: tuple[str, ...]) -> RecordLayout:
    fields_key = f"{record}_fields"
    types_key = f"{record}_types"

    fields = meta.get(fields_key)
    if not isinstance(fields, list) or not fields:
        raise SchemaMismatchError(f"descriptor has no {fields_key}", field=fields_key)
    if not all(isinstance(f, str) for f in fields):
        raise SchemaMismatchError(f"{fields_key} must be a list of names", field=fields_key)

    offsets: dict[str, int] = {}
    for pos, name in enumerate(fields):
        # First declaration wins if a producer repeats a name
        offsets.setdefault(name, pos)

    missing = [name for name in required if name not in offsets]
    if missing:
        raise SchemaMismatchError(
            f"{fields_key} is missing required field(s): {', '.join(missing)}",
            field=missing[0],
        )

    # The enumeration for "type" sits at the same position as the type field
    types = meta.get(types_key)
    type_pos = offsets["type"]
    if not isinstance(types, list) or len(types) <= type_pos:
        raise SchemaMismatchError(f"descriptor has no {types_key} table", field=types_key)
    type_names = types[type_pos]
    if not isinstance(type_names, list) or not all(isinstance(t, str) for t in type_names):
        raise SchemaMismatchError(
            f"{types_key} entry for 'type' is not an enumeration", field=types_key,
        )

    return RecordLayout(
        record=record,
        fields=tuple(fields),
        type_names=tuple(type_names),
        offsets=offsets,
    )


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value
