"""Tests for configuration defaults and YAML loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from heap_analyzer.config import AnalyzerConfig, load_config


def test_defaults():
    config = AnalyzerConfig()
    assert config.decode.retained_size == "self"
    assert config.decode.max_decode_bytes == 512 * 1024 * 1024
    assert config.matcher.use_identity
    assert config.growth.significant_change_ratio == 0.10
    assert config.growth.workers == 1
    assert config.retainers.max_depth == 8
    assert config.retainers.max_nodes_visited == 10_000
    assert config.retainers.time_budget_ms == 50
    assert config.hypotheses.top_n == 20
    assert config.hypotheses.min_confidence == 20
    assert "timers" in config.hypotheses.keyword_groups


def test_load_none_gives_defaults():
    assert load_config(None) == AnalyzerConfig()


def test_load_yaml(tmp_path):
    path = tmp_path / "heap-analyzer.yaml"
    path.write_text(
        "decode:\n"
        "  retained_size: dominator\n"
        "  max_decode_bytes: 1000\n"
        "retainers:\n"
        "  max_depth: 3\n"
        "hypotheses:\n"
        "  top_n: 5\n"
        "explain_top: 0\n"
    )
    config = load_config(path)
    assert config.decode.retained_size == "dominator"
    assert config.decode.max_decode_bytes == 1000
    assert config.retainers.max_depth == 3
    assert config.retainers.max_nodes_visited == 10_000
    assert config.hypotheses.top_n == 5
    assert config.explain_top == 0


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == AnalyzerConfig()


def test_invalid_value(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("decode:\n  retained_size: exact\n")
    with pytest.raises(ValidationError):
        load_config(path)


def test_out_of_range_confidence(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("hypotheses:\n  min_confidence: 120\n")
    with pytest.raises(ValidationError):
        load_config(path)


def test_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")
