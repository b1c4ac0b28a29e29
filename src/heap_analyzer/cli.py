"""CLI entry point for heap-analyzer."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
import yaml

from heap_analyzer import __version__
from heap_analyzer.analysis.enrichment import MemlabTraceEnricher
from heap_analyzer.config import load_config
from heap_analyzer.errors import HeapAnalyzerError
from heap_analyzer.pipeline import AnalysisRun, run_analysis
from heap_analyzer.utils import discover_snapshots, format_bytes


@click.command()
@click.argument("snapshots", nargs=-1, required=True, type=click.Path(exists=True, resolve_path=True))
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    default=None,
    help="YAML configuration file.",
)
@click.option(
    "-f", "--format", "fmt",
    type=click.Choice(["text", "json", "yaml"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.option(
    "-o", "--output",
    type=click.Path(resolve_path=True),
    default=None,
    help="Output file path. Defaults to stdout.",
)
@click.option("--top", type=int, default=None, help="Override the number of hypotheses reported.")
@click.option(
    "--trace/--no-trace", default=False,
    help="Enrich the top hypotheses with `memlab trace` when memlab is installed.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
@click.version_option(version=__version__)
def main(
    snapshots: tuple[str, ...],
    config_path: str | None,
    fmt: str,
    output: str | None,
    top: int | None,
    trace: bool,
    verbose: bool,
) -> None:
    """Find memory leaks across heap snapshots, given oldest first.

    SNAPSHOTS are .heapsnapshot files, or a single directory whose snapshots
    are sorted by capture time.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s %(levelname)s: %(message)s",
    )

    paths = _resolve_paths(snapshots)
    try:
        config = load_config(Path(config_path) if config_path else None)
    except (ValueError, yaml.YAMLError) as exc:
        # pydantic.ValidationError is a ValueError
        raise click.ClickException(f"invalid config {config_path}: {exc}") from exc
    if top is not None:
        config.hypotheses.top_n = max(1, top)

    enricher = MemlabTraceEnricher() if trace else None
    try:
        run = run_analysis(paths, config, enricher=enricher)
    except HeapAnalyzerError as exc:
        raise click.ClickException(f"analysis failed: {exc}") from exc

    if fmt == "json":
        text = json.dumps(run.as_dict(), indent=2)
    elif fmt == "yaml":
        text = yaml.safe_dump(run.as_dict(), sort_keys=False)
    else:
        text = render_text(run)

    if output:
        Path(output).write_text(text)
        click.echo(f"Report written to {output}")
    else:
        click.echo(text)


def _resolve_paths(snapshots: tuple[str, ...]) -> list[Path]:
    paths = [Path(p) for p in snapshots]
    if len(paths) == 1 and paths[0].is_dir():
        found = discover_snapshots(paths[0])
        if not found:
            raise click.ClickException(f"no .heapsnapshot files in {paths[0]}")
        return found
    directories = [p for p in paths if p.is_dir()]
    if directories:
        raise click.UsageError("pass either one directory or snapshot files, not both")
    return paths


def render_text(run: AnalysisRun) -> str:
    """Plain-text summary for the terminal."""
    lines: list[str] = [f"Status: {run.status}"]

    if run.coarse is not None:
        c = run.coarse
        lines.append(f"Severity: {c.severity.upper()} (coarse comparison, full decode refused)")
        lines.append(f"Objects: {c.before_nodes:,} -> {c.after_nodes:,} ({c.object_growth_percent:+.0f}%)")
        lines.append(f"File size: {format_bytes(c.before_bytes)} -> {format_bytes(c.after_bytes)}")
        lines.extend(f"  * {i}" for i in c.insights)
        lines.append("Recommendations:")
        lines.extend(f"  - {r}" for r in c.recommendations)
        return "\n".join(lines)

    for info in run.snapshots:
        lines.append(
            f"  {info.label}: {info.node_count:,} nodes, {format_bytes(info.total_size)}"
        )
    for warning in run.warnings:
        lines.append(f"  warning: {warning}")

    if run.diff is not None:
        m = run.diff.memory
        lines.append(
            f"Heap: {format_bytes(m.before_size)} -> {format_bytes(m.after_size)} "
            f"({format_bytes(m.growth)}, {m.growth_percent:+.1f}%)"
        )

    if run.summary is not None:
        lines.append(f"Leak confidence: {run.summary.leak_confidence.upper()}")
        lines.extend(f"  * {c}" for c in run.summary.primary_concerns)

    if run.hypotheses:
        lines.append("")
        lines.append("Leak hypotheses:")
        for n, h in enumerate(run.hypotheses, 1):
            pattern = h.pattern.value if h.pattern else "diff only"
            lines.append(
                f"{n:>3}. [{h.confidence:>2}%] {h.category.value} {h.shape} "
                f"+{format_bytes(h.retained_size_estimate)} ({pattern})"
            )
            for hint in h.retainers[:1]:
                lines.append(f"       retained by: {hint.path}")
            lines.append(f"       fix: {h.suggested_fix}")

    if run.summary is not None:
        lines.append("")
        lines.append("Recommendations:")
        lines.extend(f"  - {r}" for r in run.summary.recommendations)
    return "\n".join(lines)


if __name__ == "__main__":
    main()
