"""Shared utilities for heap-analyzer."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

SNAPSHOT_SUFFIX = ".heapsnapshot"

# heap-2024-05-01T12-30-45-123Z.heapsnapshot
_CAPTURE_NAME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{3}))?Z"
)


def format_bytes(size: int | float) -> str:
    """Return a human-readable byte count: 512 B, 1.5 KB, 3.2 MB."""
    sign = "-" if size < 0 else ""
    value = float(abs(size))
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            if unit == "B":
                return f"{sign}{int(value)} B"
            return f"{sign}{value:.1f} {unit}"
        value /= 1024
    return f"{sign}{value:.1f} GB"


def parse_capture_time(path: Path) -> datetime | None:
    """Capture time encoded in a snapshot file name, if any."""
    match = _CAPTURE_NAME_RE.search(path.name)
    if match is None:
        return None
    year, month, day, hour, minute, second, millis = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second),
            int(millis or 0) * 1000, tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def capture_time(path: Path) -> datetime:
    """File-name timestamp, falling back to the file's modification time."""
    parsed = parse_capture_time(path)
    if parsed is not None:
        return parsed
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def discover_snapshots(directory: Path) -> list[Path]:
    """``*.heapsnapshot`` files directly under ``directory``, oldest capture first."""
    files = [p for p in directory.iterdir() if p.is_file() and p.suffix == SNAPSHOT_SUFFIX]
    return sorted(files, key=lambda p: (capture_time(p), p.name))
