"""heap-analyzer: find memory leaks in JavaScript heap snapshots."""

__version__ = "0.1.0"

from heap_analyzer.analysis import (  # noqa: E402
    GrowthTracker,
    RetainerBudget,
    classify,
    classify_leaks,
    diff,
    explain,
    track_growth,
)
from heap_analyzer.snapshot import Snapshot, decode  # noqa: E402

__all__ = [
    "__version__",
    "classify",
    "classify_leaks",
    "decode",
    "diff",
    "explain",
    "GrowthTracker",
    "RetainerBudget",
    "Snapshot",
    "track_growth",
]
