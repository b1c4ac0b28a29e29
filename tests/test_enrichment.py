"""Tests for the optional memlab trace enricher."""

from __future__ import annotations

import subprocess
from pathlib import Path

from heap_analyzer.analysis.enrichment import MemlabTraceEnricher, TraceEnricher
from heap_analyzer.analysis.models import NodeRef

REF = NodeRef(index=3, id=4242, kind="object", name="Array", self_size=10, retained_size=10)


def test_satisfies_protocol():
    assert isinstance(MemlabTraceEnricher(), TraceEnricher)


def test_unavailable_when_not_on_path():
    enricher = MemlabTraceEnricher(executable="definitely-not-a-real-memlab-binary")
    assert not enricher.available()
    assert enricher.version() is None


def test_enrich_builds_trace_command(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="Window -> cache -> Array\n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    trace = MemlabTraceEnricher().enrich(Path("/tmp/after.heapsnapshot"), REF)
    assert trace == "Window -> cache -> Array"
    assert calls == [["memlab", "trace", "--snapshot", "/tmp/after.heapsnapshot", "--node-id", "4242"]]


def test_enrich_failure_returns_none(monkeypatch):
    monkeypatch.setattr(
        subprocess, "run",
        lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="boom"),
    )
    assert MemlabTraceEnricher().enrich(Path("x.heapsnapshot"), REF) is None


def test_long_output_truncated(monkeypatch):
    monkeypatch.setattr(
        subprocess, "run",
        lambda cmd, **kw: subprocess.CompletedProcess(cmd, 0, stdout="x" * 100, stderr=""),
    )
    trace = MemlabTraceEnricher(max_output=10).enrich(Path("x.heapsnapshot"), REF)
    assert trace.startswith("x" * 10)
    assert trace.endswith("(truncated)")
