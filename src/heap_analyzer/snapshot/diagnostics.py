"""Aggregate counts of per-record anomalies recovered during decode."""

from __future__ import annotations

from pydantic import BaseModel, Field

from heap_analyzer.errors import DanglingEdgeWarning

# Only the first few dropped edges are kept verbatim; the count is exact.
MAX_DANGLING_SAMPLES = 20


class DecodeDiagnostics(BaseModel):
    dangling_edges: int = 0
    unknown_node_types: int = 0
    unknown_edge_types: int = 0
    invalid_string_refs: int = 0
    negative_sizes: int = 0
    dangling_samples: list[DanglingEdgeWarning] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_anomalies(self) -> bool:
        return bool(
            self.dangling_edges or self.unknown_node_types or self.unknown_edge_types
            or self.invalid_string_refs or self.negative_sizes or self.warnings
        )

    def record_dangling(self, warning: DanglingEdgeWarning) -> None:
        self.dangling_edges += 1
        if len(self.dangling_samples) < MAX_DANGLING_SAMPLES:
            self.dangling_samples.append(warning)

    def summary(self) -> list[str]:
        """Human-readable lines, one per non-zero counter."""
        lines: list[str] = []
        if self.dangling_edges:
            lines.append(f"{self.dangling_edges} edges skipped due to invalid node references")
        if self.unknown_node_types:
            lines.append(f"{self.unknown_node_types} nodes with an unknown type")
        if self.unknown_edge_types:
            lines.append(f"{self.unknown_edge_types} edges with an unknown type")
        if self.invalid_string_refs:
            lines.append(f"{self.invalid_string_refs} string-table references out of range")
        if self.negative_sizes:
            lines.append(f"{self.negative_sizes} negative self sizes clamped to 0")
        lines.extend(self.warnings)
        return lines

    def merge(self, other: DecodeDiagnostics) -> DecodeDiagnostics:
        merged = self.model_copy(deep=True)
        merged.dangling_edges += other.dangling_edges
        merged.unknown_node_types += other.unknown_node_types
        merged.unknown_edge_types += other.unknown_edge_types
        merged.invalid_string_refs += other.invalid_string_refs
        merged.negative_sizes += other.negative_sizes
        room = MAX_DANGLING_SAMPLES - len(merged.dangling_samples)
        merged.dangling_samples.extend(other.dangling_samples[:max(room, 0)])
        merged.warnings.extend(other.warnings)
        return merged
