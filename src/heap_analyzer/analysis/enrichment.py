"""Optional enrichment from an external, more precise retainer-trace tool.

The pipeline works without any enricher. When one is supplied and available,
its output is attached to the top hypotheses; failures are logged and ignored.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from heap_analyzer.analysis.models import NodeRef

log = logging.getLogger(__name__)


@runtime_checkable
class TraceEnricher(Protocol):
    name: str

    def available(self) -> bool:
        ...

    def enrich(self, snapshot_path: Path, node: NodeRef) -> str | None:
        """Return a retainer trace for ``node``, or None when nothing useful came back."""
        ...


class MemlabTraceEnricher:
    """Runs ``memlab trace --snapshot <file> --node-id <id>`` when memlab is on PATH."""

    name = "memlab"

    def __init__(self, executable: str = "memlab", timeout: float = 60.0, max_output: int = 8000) -> None:
        self.executable = executable
        self.timeout = timeout
        self.max_output = max_output

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def version(self) -> str | None:
        """Version string of the tool, or None if not installed."""
        if not self.available():
            return None
        try:
            out = subprocess.run(
                [self.executable, "version"], capture_output=True, text=True, timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return "unknown"
        text = (out.stdout or out.stderr).strip().split("\n")[0]
        for token in text.split():
            if token and token[0].isdigit():
                return token
        return text or "unknown"

    def enrich(self, snapshot_path: Path, node: NodeRef) -> str | None:
        cmd = [
            self.executable, "trace",
            "--snapshot", str(snapshot_path),
            "--node-id", str(node.id),
        ]
        log.debug("Running %s", " ".join(cmd))
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        if out.returncode != 0:
            log.warning(
                "%s trace exited with %d for node @%d: %s",
                self.name, out.returncode, node.id, (out.stderr or "").strip()[:200],
            )
            return None
        text = out.stdout.strip()
        if not text:
            return None
        if len(text) > self.max_output:
            text = text[:self.max_output] + "\n... (truncated)"
        return text
