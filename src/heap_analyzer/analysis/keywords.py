"""Leak-associated keyword signals from a snapshot's string table."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from heap_analyzer.analysis.models import KeywordSignals
from heap_analyzer.snapshot.graph import Snapshot

log = logging.getLogger(__name__)

# Very long strings are payloads (source text, JSON blobs), not identifiers.
MAX_SCANNED_LENGTH = 256

DEFAULT_KEYWORD_GROUPS: dict[str, list[str]] = {
    "timers": ["setInterval", "setTimeout", "clearInterval", "clearTimeout", "Timeout"],
    "listeners": [
        "addEventListener", "removeEventListener", "EventEmitter", "EventTarget",
        "listener", "Listener", "handler", "Handler",
    ],
    "containers": [
        "cache", "Cache", "registry", "Registry", "store", "Store", "pool", "Pool",
        "history", "History", "queue", "Queue",
    ],
    "leaks": ["leak", "Leak", "detached", "Detached", "retain", "Retain"],
}


def scan_strings(
    strings: Iterable[str], groups: Mapping[str, list[str]] = DEFAULT_KEYWORD_GROUPS,
) -> KeywordSignals:
    counts = {group: 0 for group in groups}
    for text in strings:
        if len(text) > MAX_SCANNED_LENGTH:
            continue
        for group, terms in groups.items():
            if any(term in text for term in terms):
                counts[group] += 1
    return KeywordSignals(counts=counts)


def scan_keywords(
    snapshot: Snapshot, groups: Mapping[str, list[str]] = DEFAULT_KEYWORD_GROUPS,
) -> KeywordSignals:
    """Count string-table entries matching each keyword group."""
    signals = scan_strings(snapshot.strings, groups)
    log.debug("Keyword signals for %s: %s", snapshot.label or "<unnamed>", signals.counts)
    return signals
