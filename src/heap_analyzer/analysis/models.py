"""Pydantic models for diff, growth and leak-hypothesis results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class NodeCategory(str, Enum):
    SYSTEM = "system"          # engine internals: hidden, synthetic, code, shapes
    DOM = "dom"
    TIMER = "timer"
    ASYNC = "async"            # promises, async functions, generators
    CLOSURE = "closure"
    COLLECTION = "collection"  # Map, Set, WeakMap, WeakSet
    BINARY = "binary"          # ArrayBuffer, typed arrays, Buffer
    ARRAY = "array"
    STRING = "string"
    OBJECT = "object"


class SizeBucket(str, Enum):
    XS = "<=1KB"
    S = "<=10KB"
    M = "<=100KB"
    L = "<=1MB"
    XL = ">1MB"


class GrowthPattern(str, Enum):
    MONOTONIC = "monotonic"
    SIGNIFICANT = "significant"
    FLUCTUATING = "fluctuating"
    STABLE = "stable"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LeakCategory(str, Enum):
    COLLECTION_GROWTH = "collection_growth"
    DETACHED_DOM = "detached_dom"
    EVENT_LISTENER = "event_listener"
    CLOSURE = "closure"
    TIMER = "timer"
    UNRESOLVED_PROMISE = "unresolved_promise"
    STRING_ACCUMULATION = "string_accumulation"
    DATA_BUFFER = "data_buffer"
    OBJECT_GROWTH = "object_growth"


class ShapeKey(BaseModel):
    """Cross-snapshot aggregation key: category + declared name + size bucket."""
    model_config = ConfigDict(frozen=True)

    category: NodeCategory
    name: str
    size_bucket: SizeBucket

    def __str__(self) -> str:
        return f"{self.category.value}:{self.name or '<anonymous>'}:{self.size_bucket.value}"


class NodeRef(BaseModel):
    """Lightweight reference to a node in one snapshot (index is snapshot-local)."""
    model_config = ConfigDict(frozen=True)

    index: int
    id: int
    kind: str
    name: str
    self_size: int
    retained_size: int


# ── Diff ────────────────────────────────────────────────────────────────


class GrownObject(BaseModel):
    before: NodeRef
    after: NodeRef
    before_size: int
    after_size: int

    @computed_field
    @property
    def growth(self) -> int:
        return self.after_size - self.before_size


class ShapeDelta(BaseModel):
    """Exact per-shape change for the unmatched (non-identity) part of a diff."""
    shape: ShapeKey
    before_count: int = 0
    after_count: int = 0
    before_size: int = 0
    after_size: int = 0

    @computed_field
    @property
    def count_delta(self) -> int:
        return self.after_count - self.before_count

    @computed_field
    @property
    def size_delta(self) -> int:
        return self.after_size - self.before_size


class MemoryGrowth(BaseModel):
    before_size: int = 0
    after_size: int = 0
    before_nodes: int = 0
    after_nodes: int = 0

    @computed_field
    @property
    def growth(self) -> int:
        return self.after_size - self.before_size

    @computed_field
    @property
    def growth_percent(self) -> float:
        if self.before_size == 0:
            return 0.0 if self.after_size == 0 else 100.0
        return round(100.0 * (self.after_size - self.before_size) / self.before_size, 2)


class DiffResult(BaseModel):
    new_objects: list[NodeRef] = Field(default_factory=list)
    removed_objects: list[NodeRef] = Field(default_factory=list)
    grown_objects: list[GrownObject] = Field(default_factory=list)
    shape_deltas: list[ShapeDelta] = Field(default_factory=list)
    memory: MemoryGrowth = Field(default_factory=MemoryGrowth)
    # Exact totals; the representative lists above may be capped.
    new_count: int = 0
    removed_count: int = 0

    @computed_field
    @property
    def is_empty(self) -> bool:
        return not (self.new_objects or self.removed_objects or self.grown_objects)


# ── Growth ──────────────────────────────────────────────────────────────


class ShapeHistory(BaseModel):
    shape: ShapeKey
    counts: list[int] = Field(default_factory=list)
    total_sizes: list[int] = Field(default_factory=list)
    first_seen: int = 0         # position of the first snapshot containing the shape
    last_seen: int = 0
    pattern: GrowthPattern = GrowthPattern.STABLE
    severity: Severity = Severity.LOW
    resolved: bool = False      # absent from the most recent snapshot
    peak_count: int = 0
    peak_size: int = 0
    examples: list[NodeRef] = Field(default_factory=list)

    @computed_field
    @property
    def total_growth(self) -> int:
        if not self.total_sizes:
            return 0
        return self.total_sizes[-1] - self.total_sizes[0]

    @computed_field
    @property
    def count_growth(self) -> int:
        if not self.counts:
            return 0
        return self.counts[-1] - self.counts[0]

    @computed_field
    @property
    def growth_rate(self) -> float:
        """Average bytes gained per snapshot interval."""
        steps = len(self.total_sizes) - 1
        if steps <= 0:
            return 0.0
        return round(self.total_growth / steps, 2)


# ── Hypotheses ──────────────────────────────────────────────────────────


class EdgeLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    label: str          # property name, or "[i]" for indexed references
    from_node: NodeRef
    to_node: NodeRef


class RetainerHint(BaseModel):
    target: NodeRef
    chain: list[EdgeLabel] = Field(default_factory=list)   # ancestor -> target
    reached_root: bool = False
    truncated_by: str | None = None   # "depth" | "nodes" | "time"
    nodes_visited: int = 0

    @computed_field
    @property
    def path(self) -> str:
        if not self.chain:
            return self.target.name or self.target.kind
        head = self.chain[0].from_node
        parts = [head.name or head.kind]
        parts.extend(edge.label for edge in self.chain)
        return " -> ".join(parts)


class LeakHypothesis(BaseModel):
    category: LeakCategory
    confidence: int = Field(ge=0, le=95)
    retained_size_estimate: int = 0
    shape: ShapeKey
    affected_nodes: list[NodeRef] = Field(default_factory=list)
    affected_count: int = 0
    pattern: GrowthPattern | None = None
    description: str = ""
    suggested_fix: str = ""
    signals: list[str] = Field(default_factory=list)
    retainers: list[RetainerHint] = Field(default_factory=list)
    enrichment: str | None = None

    @computed_field
    @property
    def rank_score(self) -> float:
        return float(self.confidence * self.retained_size_estimate)


class LeakSummary(BaseModel):
    leak_confidence: str = "low"      # "high", "medium", "low"
    total_growth: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    primary_concerns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class KeywordSignals(BaseModel):
    """Occurrences of leak-associated terms in a snapshot's string table."""
    counts: dict[str, int] = Field(default_factory=dict)   # group -> hits

    def hits(self, group: str) -> int:
        return self.counts.get(group, 0)


class CoarseComparison(BaseModel):
    """File-size and header-count comparison used when full decode is refused."""
    before_bytes: int
    after_bytes: int
    before_nodes: int
    after_nodes: int
    before_edges: int = 0
    after_edges: int = 0
    severity: str = "high"            # "catastrophic", "critical", "high"
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def memory_growth(self) -> int:
        return self.after_bytes - self.before_bytes

    @computed_field
    @property
    def object_growth_percent(self) -> float:
        if self.before_nodes == 0:
            return 0.0
        return round(100.0 * (self.after_nodes - self.before_nodes) / self.before_nodes, 2)
