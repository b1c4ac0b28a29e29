"""Snapshot decoding and the read-only heap graph.

Provides:
    decode(raw) -> Snapshot
    read_header(path) -> SnapshotHeader
"""

from __future__ import annotations

from heap_analyzer.snapshot.decoder import decode, decode_document
from heap_analyzer.snapshot.diagnostics import DecodeDiagnostics
from heap_analyzer.snapshot.graph import Snapshot
from heap_analyzer.snapshot.header import SnapshotHeader, read_header
from heap_analyzer.snapshot.nodes import Edge, Node

__all__ = [
    "decode",
    "decode_document",
    "DecodeDiagnostics",
    "Edge",
    "Node",
    "read_header",
    "Snapshot",
    "SnapshotHeader",
]
