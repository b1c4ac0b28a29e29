"""Analysis pipeline: decode -> growth + diff -> hypotheses -> retainers -> enrichment.

Snapshots are decoded one at a time. Only the first and the most recent
graphs stay in memory; the GrowthTracker keeps per-shape counters. Inputs
above the configured size ceiling switch the whole run to a header-only
coarse comparison instead of a full decode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

from pydantic import BaseModel

from heap_analyzer.analysis.enrichment import TraceEnricher
from heap_analyzer.analysis.growth import GrowthTracker
from heap_analyzer.analysis.hypotheses import (
    attach_retainers,
    classify_leaks,
    rank_hypotheses,
    summarize,
)
from heap_analyzer.analysis.keywords import scan_keywords
from heap_analyzer.analysis.matcher import diff as diff_snapshots
from heap_analyzer.analysis.models import (
    CoarseComparison,
    DiffResult,
    KeywordSignals,
    LeakHypothesis,
    LeakSummary,
    ShapeHistory,
)
from heap_analyzer.analysis.retainers import resolve_retainers
from heap_analyzer.config import AnalyzerConfig
from heap_analyzer.errors import HeapAnalyzerError, ResourceExceededError
from heap_analyzer.snapshot.decoder import decode
from heap_analyzer.snapshot.diagnostics import DecodeDiagnostics
from heap_analyzer.snapshot.graph import Snapshot
from heap_analyzer.snapshot.header import SnapshotHeader, read_header
from heap_analyzer.utils import capture_time, format_bytes

log = logging.getLogger(__name__)

MB = 1024 * 1024
RETAINER_NODES_PER_HYPOTHESIS = 2


@dataclass
class StageResult:
    """Result from a single stage of the analysis pipeline."""
    name: str           # "decode", "growth", "diff", "keywords", "hypotheses", ...
    status: str         # "ran", "skipped", "error"
    findings: int       # count of items produced, -1 if N/A
    description: str    # what this stage does


class SnapshotInfo(BaseModel):
    label: str
    captured_at: datetime
    node_count: int
    edge_count: int
    total_size: int
    byte_size: int | None = None
    diagnostics: DecodeDiagnostics


@dataclass
class AnalysisRun:
    """Everything one analysis produced, plus the stage audit trail."""
    status: str                                   # "completed", "completed_with_warnings", "coarse"
    snapshots: list[SnapshotInfo] = field(default_factory=list)
    diff: DiffResult | None = None
    growth: list[ShapeHistory] = field(default_factory=list)
    keywords: KeywordSignals | None = None
    hypotheses: list[LeakHypothesis] = field(default_factory=list)
    summary: LeakSummary | None = None
    coarse: CoarseComparison | None = None
    stages: list[StageResult] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        lines = []
        for info in self.snapshots:
            lines.extend(f"{info.label}: {line}" for line in info.diagnostics.summary())
        return lines

    def as_dict(self, *, growth_limit: int = 50) -> dict[str, Any]:
        """JSON-friendly view; only growing, unresolved shapes are listed under growth."""
        growing = [h for h in self.growth if h.total_growth > 0 and not h.resolved]
        return {
            "status": self.status,
            "snapshots": [s.model_dump(mode="json") for s in self.snapshots],
            "warnings": self.warnings,
            "summary": self.summary.model_dump(mode="json") if self.summary else None,
            "hypotheses": [h.model_dump(mode="json") for h in self.hypotheses],
            "growth": [h.model_dump(mode="json") for h in growing[:growth_limit]],
            "diff": self.diff.model_dump(mode="json") if self.diff else None,
            "keywords": self.keywords.model_dump(mode="json") if self.keywords else None,
            "coarse": self.coarse.model_dump(mode="json") if self.coarse else None,
            "stages": [vars(s).copy() for s in self.stages],
        }


# ── Loading ──────────────────────────────────────────────────────────────


def load_snapshot(path: Path, config: AnalyzerConfig | None = None) -> Snapshot:
    """Decode one snapshot file, capture time from its name or mtime.

    Raises:
        ResourceExceededError: the file is above ``decode.max_decode_bytes``.
    """
    config = config or AnalyzerConfig()
    limit = config.decode.max_decode_bytes
    size = path.stat().st_size
    if size > limit:
        raise ResourceExceededError(size, limit)
    return decode(
        path.read_bytes(),
        captured_at=capture_time(path),
        label=path.name,
        max_bytes=limit,
        retained_size=config.decode.retained_size,
    )


def run_analysis(
    paths: list[Path],
    config: AnalyzerConfig | None = None,
    *,
    enricher: TraceEnricher | None = None,
) -> AnalysisRun:
    """Analyze snapshot files, given oldest first.

    Args:
        paths: Two or more snapshot files in capture order.
        config: Analyzer configuration; defaults when None.
        enricher: Optional external trace tool for the top hypotheses.

    Raises:
        HeapAnalyzerError: fewer than two snapshots, or a fatal decode/ordering error.
    """
    config = config or AnalyzerConfig()
    if len(paths) < 2:
        raise HeapAnalyzerError("at least two snapshots are needed to analyze growth")

    limit = config.decode.max_decode_bytes
    oversized = [p for p in paths if p.stat().st_size > limit]
    if oversized:
        log.warning(
            "%d snapshot(s) above the %s decode ceiling; falling back to coarse comparison",
            len(oversized), format_bytes(limit),
        )
        return coarse_analysis(paths[0], paths[-1])

    sizes = {p.name: p.stat().st_size for p in paths}

    def loaded() -> Iterator[Snapshot]:
        for path in paths:
            log.info("Decoding %s (%s)", path, format_bytes(sizes[path.name]))
            yield load_snapshot(path, config)

    try:
        run = analyze(loaded(), config, enricher=enricher, last_path=paths[-1])
    except ResourceExceededError:
        log.warning("Decode ceiling hit mid-run; falling back to coarse comparison")
        return coarse_analysis(paths[0], paths[-1])

    for info in run.snapshots:
        info.byte_size = sizes.get(info.label)
    return run


def analyze(
    snapshots: Iterable[Snapshot],
    config: AnalyzerConfig | None = None,
    *,
    enricher: TraceEnricher | None = None,
    last_path: Path | None = None,
) -> AnalysisRun:
    """Analyze already-decoded (or lazily decoded) snapshots, oldest first."""
    config = config or AnalyzerConfig()
    tracker = GrowthTracker(
        significant_change_ratio=config.growth.significant_change_ratio,
        workers=config.growth.workers,
    )
    stages: list[StageResult] = []
    infos: list[SnapshotInfo] = []

    # Phase 1: decode + growth (first and latest graphs only)
    first: Snapshot | None = None
    last: Snapshot | None = None
    for snapshot in snapshots:
        tracker.process_snapshot(snapshot)
        infos.append(_info(snapshot))
        if first is None:
            first = snapshot
        last = snapshot

    if first is None or last is None or tracker.snapshots_processed < 2:
        raise HeapAnalyzerError("at least two snapshots are needed to analyze growth")

    anomalies = sum(1 for i in infos if i.diagnostics.has_anomalies)
    stages.append(StageResult(
        name="decode", status="ran", findings=anomalies,
        description=f"Decoded {len(infos)} snapshots ({anomalies} with recovered anomalies)",
    ))

    growth = tracker.report()
    growing = sum(1 for h in growth if h.total_growth > 0 and not h.resolved)
    stages.append(StageResult(
        name="growth", status="ran", findings=growing,
        description="Per-shape count/size histories across all snapshots",
    ))

    # Phase 2: first vs last diff
    diff = diff_snapshots(
        first, last,
        use_identity=config.matcher.use_identity,
        max_representatives=config.matcher.max_representatives_per_shape,
        max_grown=config.matcher.max_grown_objects,
    )
    stages.append(StageResult(
        name="diff", status="ran", findings=diff.new_count + len(diff.grown_objects),
        description=f"New, removed and grown objects between {first.label or 'first'} and {last.label or 'last'}",
    ))

    # Phase 3: hypotheses
    keywords = scan_keywords(last, config.hypotheses.keyword_groups)
    stages.append(StageResult(
        name="keywords", status="ran", findings=sum(keywords.counts.values()),
        description="Leak-associated terms in the latest string table",
    ))

    hypotheses = classify_leaks(
        diff, growth,
        keywords=keywords,
        top_n=config.hypotheses.top_n,
        min_confidence=config.hypotheses.min_confidence,
    )
    stages.append(StageResult(
        name="hypotheses", status="ran", findings=len(hypotheses),
        description="Scored, deduplicated leak hypotheses",
    ))

    # Phase 4: retainer hints for the top candidates (non-fatal)
    hypotheses, retainer_stage = _explain_top(hypotheses, last, config)
    stages.append(retainer_stage)

    # Phase 5: optional external enrichment (non-fatal)
    hypotheses, enrich_stage = _enrich_top(hypotheses, enricher, last_path, config.explain_top)
    stages.append(enrich_stage)

    summary = summarize(diff, hypotheses)
    status = "completed_with_warnings" if anomalies else "completed"
    log.info(
        "Analysis %s: %d hypotheses, leak confidence %s",
        status, len(hypotheses), summary.leak_confidence,
    )
    return AnalysisRun(
        status=status,
        snapshots=infos,
        diff=diff,
        growth=growth,
        keywords=keywords,
        hypotheses=hypotheses,
        summary=summary,
        stages=stages,
    )


# ── Coarse fallback ──────────────────────────────────────────────────────


def coarse_compare(before: SnapshotHeader, after: SnapshotHeader) -> CoarseComparison:
    """Compare two snapshots from header counts and file sizes only."""
    object_growth = after.node_count - before.node_count
    object_pct = 100.0 * object_growth / before.node_count if before.node_count else 0.0
    memory_growth = after.byte_size - before.byte_size
    memory_mb = memory_growth / MB
    memory_pct = 100.0 * memory_growth / before.byte_size if before.byte_size else 0.0

    if object_pct > 5000 or memory_mb > 500:
        severity = "catastrophic"
    elif object_pct > 1000 or memory_mb > 100:
        severity = "critical"
    else:
        severity = "high"

    insights: list[str] = []
    recommendations: list[str] = []
    if object_growth > 1_000_000:
        insights.append(f"Object explosion: +{object_growth:,} objects ({object_pct:.0f}% increase)")
        recommendations.append(
            "Search for runaway arrays, event listener accumulation, or timer callbacks creating objects"
        )
    if memory_mb > 100:
        insights.append(f"Memory growth: +{memory_mb:.0f}MB ({memory_pct:.0f}% increase)")
        recommendations.append("Look for large data accumulation, Base64/data URLs, or closure memory capture")
    if after.node_count > 10_000_000:
        insights.append(f"Scale alert: {after.node_count / 1_000_000:.1f}M objects in memory")
        recommendations.append("Heap of this size is likely to crash the process; intervene immediately")
    if before.node_count and after.node_count / before.node_count > 50:
        insights.append(f"Exponential growth: {after.node_count / before.node_count:.0f}x object multiplication")
        recommendations.append("Check for exponential data structures or recursive object creation")
    if object_growth > 5_000_000:
        recommendations.append(
            "Likely causes: setInterval without clearInterval, addEventListener without cleanup, "
            "or runaway collection growth"
        )
    if not insights:
        insights.append(
            f"Objects {before.node_count:,} -> {after.node_count:,}, "
            f"file size {format_bytes(before.byte_size)} -> {format_bytes(after.byte_size)}"
        )
    if not recommendations:
        recommendations.append("Capture smaller snapshots (earlier in the leak) for a full analysis")

    return CoarseComparison(
        before_bytes=before.byte_size,
        after_bytes=after.byte_size,
        before_nodes=before.node_count,
        after_nodes=after.node_count,
        before_edges=before.edge_count,
        after_edges=after.edge_count,
        severity=severity,
        insights=insights,
        recommendations=recommendations,
    )


def coarse_analysis(before: Path, after: Path) -> AnalysisRun:
    comparison = coarse_compare(read_header(before), read_header(after))
    log.info("Coarse comparison %s -> %s: severity %s", before.name, after.name, comparison.severity)
    skipped = [
        StageResult(name=name, status="skipped", findings=-1, description="Full decode refused (size ceiling)")
        for name in ("decode", "growth", "diff", "hypotheses")
    ]
    return AnalysisRun(
        status="coarse",
        coarse=comparison,
        stages=[
            *skipped,
            StageResult(
                name="coarse", status="ran", findings=len(comparison.insights),
                description="Header counts and file sizes only",
            ),
        ],
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _info(snapshot: Snapshot) -> SnapshotInfo:
    return SnapshotInfo(
        label=snapshot.label,
        captured_at=snapshot.captured_at,
        node_count=snapshot.node_count(),
        edge_count=snapshot.edge_count(),
        total_size=snapshot.total_self_size(),
        diagnostics=snapshot.diagnostics,
    )


def _explain_top(
    hypotheses: list[LeakHypothesis], graph: Snapshot, config: AnalyzerConfig,
) -> tuple[list[LeakHypothesis], StageResult]:
    if config.explain_top == 0 or not hypotheses:
        return hypotheses, StageResult(
            name="retainers", status="skipped", findings=-1,
            description="Bounded reverse-edge walk for the top hypotheses",
        )

    explained = 0
    updated = list(hypotheses)
    try:
        for i, hypothesis in enumerate(updated[:config.explain_top]):
            hints = [
                resolve_retainers(ref, graph, config.retainers)
                for ref in hypothesis.affected_nodes[:RETAINER_NODES_PER_HYPOTHESIS]
            ]
            updated[i] = attach_retainers(hypothesis, hints)
            explained += len(hints)
    except Exception:
        log.exception("Retainer hints failed (non-fatal)")
        return hypotheses, StageResult(
            name="retainers", status="error", findings=explained,
            description="Bounded reverse-edge walk for the top hypotheses",
        )

    return rank_hypotheses(updated), StageResult(
        name="retainers", status="ran", findings=explained,
        description="Bounded reverse-edge walk for the top hypotheses",
    )


def _enrich_top(
    hypotheses: list[LeakHypothesis],
    enricher: TraceEnricher | None,
    snapshot_path: Path | None,
    top: int,
) -> tuple[list[LeakHypothesis], StageResult]:
    description = "External retainer trace for the top hypotheses"
    if enricher is None or snapshot_path is None or top == 0 or not hypotheses:
        return hypotheses, StageResult(name="enrichment", status="skipped", findings=-1, description=description)
    if not enricher.available():
        log.info("Trace enricher %s not installed; skipping", enricher.name)
        return hypotheses, StageResult(name="enrichment", status="skipped", findings=-1, description=description)

    updated = list(hypotheses)
    enriched = 0
    for i, hypothesis in enumerate(updated[:top]):
        if not hypothesis.affected_nodes:
            continue
        try:
            trace = enricher.enrich(snapshot_path, hypothesis.affected_nodes[0])
        except Exception:
            log.exception("Trace enrichment failed for %s (non-fatal)", hypothesis.shape)
            continue
        if trace:
            updated[i] = hypothesis.model_copy(update={"enrichment": trace})
            enriched += 1
    return updated, StageResult(name="enrichment", status="ran", findings=enriched, description=description)
