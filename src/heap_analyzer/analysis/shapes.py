"""Shape classification: maps (kind, name, self_size) to a NodeCategory and ShapeKey.

Rules are data. New categories = new SHAPE_RULES entries, no matcher or
tracker changes. The first matching rule wins, so entries are ordered from
most to least specific; OBJECT is the fallback when nothing matches.
"""

from __future__ import annotations

from bisect import insort
from dataclasses import dataclass, field
from typing import Callable

from heap_analyzer.analysis.models import NodeCategory, NodeRef, ShapeKey, SizeBucket
from heap_analyzer.snapshot.graph import Snapshot
from heap_analyzer.snapshot.nodes import Node

KB = 1024
MB = 1024 * KB

MAX_NAME_LENGTH = 120
STRING_SHAPE_NAME = "(string)"
MAX_EXAMPLES = 3

Predicate = Callable[[str, str, int], bool]


@dataclass(frozen=True)
class ShapeRule:
    category: NodeCategory
    predicate: Predicate          # (kind, name, self_size) -> bool
    description: str
    uses_size: bool = False       # size-dependent rules are never memoized


# ── Name tables ─────────────────────────────────────────────────────────

SYSTEM_KINDS = frozenset({"hidden", "synthetic", "code", "object shape"})
STRING_KINDS = frozenset({"string", "concatenated string", "sliced string", "regexp"})

DOM_NAMES = frozenset({
    "Text", "Comment", "Document", "DocumentFragment", "ShadowRoot", "NodeList",
    "HTMLCollection", "CSSStyleDeclaration", "DOMTokenList", "Window",
})
TIMER_NAMES = frozenset({"Timeout", "Immediate", "TimersList", "Timer", "TimerWrap"})
ASYNC_NAMES = frozenset({
    "Promise", "PromiseReaction", "AsyncFunction", "Generator", "AsyncGenerator",
    "AsyncResource", "PromiseWrap",
})
COLLECTION_NAMES = frozenset({"Map", "Set", "WeakMap", "WeakSet"})
BINARY_NAMES = frozenset({
    "ArrayBuffer", "SharedArrayBuffer", "DataView", "Buffer", "Blob",
    "Int8Array", "Uint8Array", "Uint8ClampedArray", "Int16Array", "Uint16Array",
    "Int32Array", "Uint32Array", "Float32Array", "Float64Array",
    "BigInt64Array", "BigUint64Array",
})


def _is_dom(kind: str, name: str, size: int) -> bool:
    return (
        name.startswith(("HTML", "SVG", "Detached "))
        or name.endswith("Element")
        or name in DOM_NAMES
    )


def _is_timer(kind: str, name: str, size: int) -> bool:
    return name in TIMER_NAMES or name.startswith(("setInterval", "setTimeout"))


def _is_async(kind: str, name: str, size: int) -> bool:
    return name in ASYNC_NAMES or name.startswith("async ")


def _is_closure(kind: str, name: str, size: int) -> bool:
    return kind == "closure" or name == "Function" or "Closure" in name


def _is_binary(kind: str, name: str, size: int) -> bool:
    return name in BINARY_NAMES or name.startswith("system / JSArrayBufferData")


SHAPE_RULES: tuple[ShapeRule, ...] = (
    ShapeRule(NodeCategory.SYSTEM, lambda k, n, s: k in SYSTEM_KINDS,
              "Engine-internal nodes: hidden, synthetic, compiled code, object shapes"),
    ShapeRule(NodeCategory.STRING, lambda k, n, s: k in STRING_KINDS,
              "String payloads, including concatenated and sliced strings"),
    ShapeRule(NodeCategory.DOM, _is_dom,
              "DOM elements and detached DOM wrappers"),
    ShapeRule(NodeCategory.TIMER, _is_timer,
              "Timer handles kept alive by setTimeout/setInterval"),
    ShapeRule(NodeCategory.ASYNC, _is_async,
              "Promises, async functions and generators"),
    ShapeRule(NodeCategory.CLOSURE, _is_closure,
              "Closures and function objects"),
    ShapeRule(NodeCategory.COLLECTION, lambda k, n, s: n in COLLECTION_NAMES,
              "Map/Set style keyed collections"),
    ShapeRule(NodeCategory.BINARY, _is_binary,
              "ArrayBuffer, typed arrays and Buffer backing stores"),
    ShapeRule(NodeCategory.ARRAY, lambda k, n, s: k == "array" or n == "Array",
              "Arrays and array backing stores"),
)


def size_bucket(self_size: int) -> SizeBucket:
    if self_size <= KB:
        return SizeBucket.XS
    if self_size <= 10 * KB:
        return SizeBucket.S
    if self_size <= 100 * KB:
        return SizeBucket.M
    if self_size <= MB:
        return SizeBucket.L
    return SizeBucket.XL


def normalize_name(category: NodeCategory, name: str) -> str:
    # String nodes carry their contents as the name; group them together.
    if category is NodeCategory.STRING:
        return STRING_SHAPE_NAME
    if len(name) > MAX_NAME_LENGTH:
        return name[:MAX_NAME_LENGTH]
    return name


class ShapeClassifier:
    """Applies an ordered rule table. Category lookups are memoized per (kind, name)."""

    def __init__(self, rules: tuple[ShapeRule, ...] = SHAPE_RULES) -> None:
        self.rules = rules
        self._size_free = not any(rule.uses_size for rule in rules)
        self._categories: dict[tuple[str, str], NodeCategory] = {}
        self._keys: dict[tuple[NodeCategory, str, SizeBucket], ShapeKey] = {}

    def category_of(self, kind: str, name: str, self_size: int = 0) -> NodeCategory:
        if self._size_free:
            cached = self._categories.get((kind, name))
            if cached is not None:
                return cached
        category = NodeCategory.OBJECT
        for rule in self.rules:
            if rule.predicate(kind, name, self_size):
                category = rule.category
                break
        # String contents are unbounded; only memoize bounded name spaces.
        if self._size_free and category is not NodeCategory.STRING:
            self._categories[(kind, name)] = category
        return category

    def shape_of(self, kind: str, name: str, self_size: int) -> ShapeKey:
        category = self.category_of(kind, name, self_size)
        lookup = (category, normalize_name(category, name), size_bucket(self_size))
        key = self._keys.get(lookup)
        if key is None:
            key = ShapeKey(category=lookup[0], name=lookup[1], size_bucket=lookup[2])
            self._keys[lookup] = key
        return key

    def classify(self, node: Node | NodeRef) -> tuple[NodeCategory, ShapeKey]:
        key = self.shape_of(node.kind, node.name, node.self_size)
        return key.category, key

    def shape_at(self, snapshot: Snapshot, index: int) -> ShapeKey:
        return self.shape_of(
            snapshot.kind_of(index), snapshot.name_of(index), snapshot.self_size_of(index),
        )


DEFAULT_CLASSIFIER = ShapeClassifier()


def classify(node: Node | NodeRef) -> tuple[NodeCategory, ShapeKey]:
    """Classify a node with the default rule table."""
    return DEFAULT_CLASSIFIER.classify(node)


def node_ref(snapshot: Snapshot, index: int) -> NodeRef:
    return NodeRef(
        index=index,
        id=snapshot.id_of(index),
        kind=snapshot.kind_of(index),
        name=snapshot.name_of(index),
        self_size=snapshot.self_size_of(index),
        retained_size=snapshot.retained_size_of(index),
    )


# ── Census ──────────────────────────────────────────────────────────────


@dataclass
class ShapeTally:
    """Per-shape count and size over a node range, plus a few example indices."""
    count: int = 0
    total_size: int = 0
    examples: list[tuple[int, int]] = field(default_factory=list)   # (self_size, index)
    max_examples: int = MAX_EXAMPLES

    def add(self, index: int, self_size: int) -> None:
        self.count += 1
        self.total_size += self_size
        self._offer((self_size, index))

    def merge(self, other: ShapeTally) -> None:
        self.count += other.count
        self.total_size += other.total_size
        for example in other.examples:
            self._offer(example)

    def example_indices(self) -> list[int]:
        return [index for _, index in self.examples]

    def _offer(self, example: tuple[int, int]) -> None:
        # Largest first; ties resolved by lower index for determinism.
        if self.max_examples <= 0:
            return
        if len(self.examples) >= self.max_examples:
            if _example_rank(example) >= _example_rank(self.examples[-1]):
                return
            self.examples.pop()
        insort(self.examples, example, key=_example_rank)


def _example_rank(example: tuple[int, int]) -> tuple[int, int]:
    return -example[0], example[1]


def shape_census(
    snapshot: Snapshot,
    classifier: ShapeClassifier = DEFAULT_CLASSIFIER,
    *,
    start: int = 0,
    stop: int | None = None,
    skip: bytearray | None = None,
    max_examples: int = MAX_EXAMPLES,
) -> dict[ShapeKey, ShapeTally]:
    """Count and size every node in [start, stop) by shape.

    ``skip`` is an optional per-node flag array; flagged nodes are left out.
    """
    stop = snapshot.node_count() if stop is None else min(stop, snapshot.node_count())
    tallies: dict[ShapeKey, ShapeTally] = {}
    for index in range(max(start, 0), stop):
        if skip is not None and skip[index]:
            continue
        size = snapshot.self_size_of(index)
        key = classifier.shape_at(snapshot, index)
        tally = tallies.get(key)
        if tally is None:
            tally = ShapeTally(max_examples=max_examples)
            tallies[key] = tally
        tally.add(index, size)
    return tallies


def merge_census(parts: list[dict[ShapeKey, ShapeTally]]) -> dict[ShapeKey, ShapeTally]:
    merged: dict[ShapeKey, ShapeTally] = {}
    for part in parts:
        for key, tally in part.items():
            existing = merged.get(key)
            if existing is None:
                merged[key] = tally
            else:
                existing.merge(tally)
    return merged
