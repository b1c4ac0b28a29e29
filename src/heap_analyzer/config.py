"""Analyzer configuration: a Pydantic model with defaults, loadable from YAML.

Example ``heap-analyzer.yaml``::

    decode:
      max_decode_bytes: 268435456
      retained_size: dominator
    growth:
      workers: 4
    hypotheses:
      top_n: 10
      min_confidence: 30
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from heap_analyzer.analysis.keywords import DEFAULT_KEYWORD_GROUPS
from heap_analyzer.analysis.retainers import RetainerBudget

log = logging.getLogger(__name__)

MiB = 1024 * 1024


class DecodeConfig(BaseModel):
    max_decode_bytes: int = Field(default=512 * MiB, gt=0)
    # "self": retained == self (cheap approximation)
    # "dominator": dominator tree from the synthetic root, weak edges ignored
    retained_size: Literal["self", "dominator"] = "self"


class MatcherConfig(BaseModel):
    use_identity: bool = True
    max_representatives_per_shape: int = Field(default=100, ge=0)
    max_grown_objects: int = Field(default=1000, ge=0)


class GrowthConfig(BaseModel):
    significant_change_ratio: float = Field(default=0.10, gt=0)
    workers: int = Field(default=1, ge=1)


class HypothesisConfig(BaseModel):
    top_n: int = Field(default=20, ge=1)
    min_confidence: int = Field(default=20, ge=0, le=95)
    keyword_groups: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_KEYWORD_GROUPS.items()}
    )


class AnalyzerConfig(BaseModel):
    decode: DecodeConfig = Field(default_factory=DecodeConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    growth: GrowthConfig = Field(default_factory=GrowthConfig)
    retainers: RetainerBudget = Field(default_factory=RetainerBudget)
    hypotheses: HypothesisConfig = Field(default_factory=HypothesisConfig)
    explain_top: int = Field(default=3, ge=0)


def load_config(path: Path | None = None) -> AnalyzerConfig:
    """Load configuration from a YAML file, or defaults when ``path`` is None.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        pydantic.ValidationError: the file's values do not fit the model.
    """
    if path is None:
        return AnalyzerConfig()
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level of the config must be a mapping")
    config = AnalyzerConfig.model_validate(data)
    log.debug("Loaded config from %s", path)
    return config
