"""Error taxonomy for snapshot decoding and growth analysis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


class HeapAnalyzerError(Exception):
    """Base class for every fatal analysis error."""


class ParseError(HeapAnalyzerError):
    """Malformed or truncated snapshot input. No partial Snapshot is returned."""

    def __init__(self, message: str, *, field: str | None = None, index: int | None = None) -> None:
        self.field = field
        self.index = index
        details = []
        if field is not None:
            details.append(f"field={field}")
        if index is not None:
            details.append(f"index={index}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class SchemaMismatchError(ParseError):
    """The snapshot descriptor is missing a field or table the decoder needs."""


class ResourceExceededError(HeapAnalyzerError):
    """Input is larger than the configured ceiling for a full decode."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"snapshot is {size} bytes, above the full-decode ceiling of {limit} bytes"
        )


class OutOfOrderSnapshotError(HeapAnalyzerError):
    """A snapshot was fed to the growth tracker out of chronological order."""

    def __init__(self, previous: datetime, received: datetime) -> None:
        self.previous = previous
        self.received = received
        super().__init__(
            f"snapshot captured at {received.isoformat()} is not after "
            f"the previous snapshot ({previous.isoformat()})"
        )


@dataclass(frozen=True)
class DanglingEdgeWarning:
    """An edge dropped during decode because an endpoint is not a valid node."""
    edge_index: int      # position in the raw edge array, in records
    from_node: int       # node index owning the edge
    to_node_raw: int     # raw to_node value as stored in the snapshot
    reason: str          # "out_of_range" | "misaligned"
