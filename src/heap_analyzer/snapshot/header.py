"""Read snapshot counts from the first few KB of a file, without a full decode."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel

from heap_analyzer.errors import ParseError

HEADER_PROBE_BYTES = 4096

_NODE_COUNT_RE = re.compile(rb'"node_count"\s*:\s*(\d+)')
_EDGE_COUNT_RE = re.compile(rb'"edge_count"\s*:\s*(\d+)')


class SnapshotHeader(BaseModel):
    node_count: int
    edge_count: int
    byte_size: int
    source: str = ""


def parse_header(prefix: bytes, byte_size: int, source: str = "") -> SnapshotHeader:
    """Extract node/edge counts from the leading bytes of a snapshot."""
    nodes = _NODE_COUNT_RE.search(prefix)
    edges = _EDGE_COUNT_RE.search(prefix)
    if nodes is None or edges is None:
        raise ParseError(
            f"unable to find node_count/edge_count in the first {len(prefix)} bytes",
            field="snapshot",
        )
    return SnapshotHeader(
        node_count=int(nodes.group(1)),
        edge_count=int(edges.group(1)),
        byte_size=byte_size,
        source=source,
    )


def read_header(path: Path, probe_bytes: int = HEADER_PROBE_BYTES) -> SnapshotHeader:
    with path.open("rb") as fh:
        prefix = fh.read(probe_bytes)
    return parse_header(prefix, path.stat().st_size, source=str(path))
