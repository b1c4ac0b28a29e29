"""Node and Edge views over a decoded snapshot. Plain records, no graph logic."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Node:
    index: int           # position in the snapshot's node table
    id: int              # snapshot-local allocation id, not stable across captures
    kind: str            # declared node type: "object"|"array"|"string"|"closure"|...
    name: str
    self_size: int
    retained_size: int   # equals self_size unless a dominator pass ran


@dataclass(frozen=True)
class Edge:
    kind: str            # declared edge type: "property"|"element"|"context"|"weak"|...
    label: str | int     # property/variable name, or element index
    from_node: int       # Node.index
    to_node: int         # Node.index

    @property
    def is_indexed(self) -> bool:
        return isinstance(self.label, int)

    def describe(self) -> str:
        if self.is_indexed:
            return f"[{self.label}]"
        return str(self.label)
