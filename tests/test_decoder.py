"""Tests for snapshot decoding: descriptor-driven layout, errors, recovered anomalies."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from builders import NODE_FIELDS, SnapshotBuilder, at
from heap_analyzer.errors import ParseError, ResourceExceededError, SchemaMismatchError
from heap_analyzer.snapshot import decode, decode_document, read_header

STRIDE = len(NODE_FIELDS)


def _small_builder() -> tuple[SnapshotBuilder, int, int]:
    b = SnapshotBuilder()
    a = b.add_node("object", "Foo", 32, node_id=11)
    c = b.add_node("string", "hello", 20, node_id=13)
    b.add_edge(b.root, a, "element", 0)
    b.add_edge(a, c, "property", "greeting")
    return b, a, c


# ── Happy path ──────────────────────────────────────────────────────────


class TestDecode:
    def test_counts_and_nodes(self):
        b, a, c = _small_builder()
        snap = decode(b.to_json(), captured_at=at(0), label="one")
        assert snap.node_count() == 3
        assert snap.edge_count() == 2
        node = snap.node_at(a)
        assert node.kind == "object"
        assert node.name == "Foo"
        assert node.id == 11
        assert node.self_size == 32
        assert node.retained_size == 32
        assert snap.label == "one"
        assert snap.captured_at == at(0)

    def test_bytes_input(self):
        b, _, _ = _small_builder()
        snap = decode(b.to_json().encode())
        assert snap.node_count() == 3

    def test_edge_labels_named_and_indexed(self):
        b, a, c = _small_builder()
        snap = b.build()
        root_edges = snap.edges_from(0)
        assert len(root_edges) == 1
        assert root_edges[0].label == 0
        assert root_edges[0].is_indexed
        assert root_edges[0].describe() == "[0]"
        named = snap.edges_from(a)
        assert named[0].kind == "property"
        assert named[0].label == "greeting"
        assert named[0].to_node == c

    def test_total_self_size(self):
        b, _, _ = _small_builder()
        assert b.build().total_self_size() == 52

    def test_default_capture_time_is_now(self):
        b, _, _ = _small_builder()
        before = datetime.now(timezone.utc)
        snap = decode(b.to_json())
        assert snap.captured_at >= before

    def test_clean_snapshot_has_no_anomalies(self):
        b, _, _ = _small_builder()
        assert not b.build().diagnostics.has_anomalies

    def test_field_order_comes_from_descriptor(self):
        """Reversing the declared field order must not change the decoded graph."""
        b, a, c = _small_builder()
        doc = b.document()
        fields = doc["snapshot"]["meta"]["node_fields"]
        types = doc["snapshot"]["meta"]["node_types"]
        order = list(reversed(range(len(fields))))
        doc["snapshot"]["meta"]["node_fields"] = [fields[i] for i in order]
        doc["snapshot"]["meta"]["node_types"] = [types[i] for i in order]
        flat = doc["nodes"]
        reordered = []
        for start in range(0, len(flat), STRIDE):
            record = flat[start:start + STRIDE]
            reordered.extend(record[i] for i in order)
        doc["nodes"] = reordered

        snap = decode_document(doc)
        node = snap.node_at(a)
        assert (node.kind, node.name, node.id, node.self_size) == ("object", "Foo", 11, 32)
        assert snap.edges_from(a)[0].to_node == c

    def test_empty_graph(self):
        doc = SnapshotBuilder().document()
        doc["nodes"] = []
        doc["edges"] = []
        snap = decode_document(doc)
        assert snap.node_count() == 0
        assert snap.total_self_size() == 0

    def test_label_survives_named_edges(self):
        b = SnapshotBuilder()
        a = b.add_node("object", "Foo", 8)
        b.add_edge(b.root, a, "property", "child")
        snap = b.build(label="heap-a.heapsnapshot")
        assert snap.label == "heap-a.heapsnapshot"
        assert "heap-a.heapsnapshot" in repr(snap)

    def test_naive_capture_time_taken_as_utc(self):
        b, _, _ = _small_builder()
        snap = decode_document(b.document(), captured_at=datetime(2030, 1, 1))
        assert snap.captured_at == datetime(2030, 1, 1, tzinfo=timezone.utc)


class TestWideValues:
    def test_unsigned_64_bit_id(self):
        b = SnapshotBuilder()
        a = b.add_node("object", "Foo", 10, node_id=2**63)
        snap = b.build()
        assert snap.node_at(a).id == 2**63
        assert snap.find_by_id(2**63) == a

    def test_unsigned_64_bit_self_size(self):
        b = SnapshotBuilder()
        a = b.add_node("object", "Huge", 2**63)
        snap = b.build()
        assert snap.node_at(a).self_size == 2**63

    def test_id_beyond_64_bits(self):
        b = SnapshotBuilder()
        a = b.add_node("object", "Foo", 10, node_id=2**64)
        with pytest.raises(ParseError) as exc:
            b.build()
        assert exc.value.field == "id"
        assert exc.value.index == a

    def test_negative_id(self):
        b, a, _ = _small_builder()
        doc = b.document()
        doc["nodes"][a * STRIDE + 2] = -1
        with pytest.raises(ParseError) as exc:
            decode_document(doc)
        assert exc.value.field == "id"

    def test_self_size_beyond_64_bits(self):
        b = SnapshotBuilder()
        a = b.add_node("object", "Huge", 2**64)
        with pytest.raises(ParseError) as exc:
            b.build()
        assert (exc.value.field, exc.value.index) == ("self_size", a)

    def test_dominator_sum_saturates(self):
        b = SnapshotBuilder()
        holder = b.add_node("object", "Holder", 2**63)
        big = b.add_node("object", "Big", 2**63)
        b.add_edge(b.root, holder, "element", 0)
        b.add_edge(holder, big, "property", "big")
        snap = b.build(retained_size="dominator")
        assert snap.node_at(holder).retained_size == 2**64 - 1


# ── Fatal errors ────────────────────────────────────────────────────────


class TestFatalErrors:
    def test_invalid_json(self):
        with pytest.raises(ParseError):
            decode(b"{not json")

    def test_not_an_object(self):
        with pytest.raises(ParseError):
            decode("[1, 2, 3]")

    def test_missing_required_node_field(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["snapshot"]["meta"]["node_fields"][NODE_FIELDS.index("self_size")] = "size"
        with pytest.raises(SchemaMismatchError) as exc:
            decode_document(doc)
        assert exc.value.field == "self_size"

    def test_missing_edge_fields(self):
        b, _, _ = _small_builder()
        doc = b.document()
        del doc["snapshot"]["meta"]["edge_fields"]
        with pytest.raises(SchemaMismatchError):
            decode_document(doc)

    def test_missing_meta(self):
        doc = {"snapshot": {}, "nodes": [], "edges": [], "strings": []}
        with pytest.raises(SchemaMismatchError):
            decode_document(doc)

    def test_schema_mismatch_is_a_parse_error(self):
        assert issubclass(SchemaMismatchError, ParseError)

    def test_truncated_node_array(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["nodes"] = doc["nodes"][:-1]
        with pytest.raises(ParseError) as exc:
            decode_document(doc)
        assert exc.value.field == "nodes"
        assert exc.value.index == 2

    def test_truncated_edge_array(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["edges"] = doc["edges"][:-1]
        with pytest.raises(ParseError) as exc:
            decode_document(doc)
        assert exc.value.field == "edges"

    def test_edge_count_mismatch(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["edges"] = doc["edges"][:3]
        with pytest.raises(ParseError) as exc:
            decode_document(doc)
        assert exc.value.field == "edge_count"

    def test_missing_strings(self):
        b, _, _ = _small_builder()
        doc = b.document()
        del doc["strings"]
        with pytest.raises(ParseError):
            decode_document(doc)

    def test_non_integer_record(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["nodes"][3] = "big"
        with pytest.raises(ParseError) as exc:
            decode_document(doc)
        assert exc.value.index == 3

    def test_size_ceiling(self):
        b, _, _ = _small_builder()
        raw = b.to_json()
        with pytest.raises(ResourceExceededError) as exc:
            decode(raw, max_bytes=10)
        assert exc.value.limit == 10
        assert exc.value.size == len(raw)


# ── Recovered anomalies ─────────────────────────────────────────────────


class TestRecoveredAnomalies:
    def test_out_of_range_edge_dropped(self):
        b, a, c = _small_builder()
        doc = b.document()
        doc["edges"][2] = 100 * STRIDE     # root -> a now points past the node table
        snap = decode_document(doc)
        assert snap.edge_count() == 1
        assert snap.diagnostics.dangling_edges == 1
        sample = snap.diagnostics.dangling_samples[0]
        assert sample.from_node == 0
        assert sample.to_node_raw == 100 * STRIDE
        assert sample.reason == "out_of_range"
        assert snap.edges_from(0) == []
        assert snap.edges_from(a)[0].to_node == c

    def test_misaligned_edge_dropped(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["edges"][2] = STRIDE + 1
        snap = decode_document(doc)
        assert snap.diagnostics.dangling_edges == 1
        assert snap.diagnostics.dangling_samples[0].reason == "misaligned"

    def test_dangling_summary_line(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["edges"][2] = 100 * STRIDE
        snap = decode_document(doc)
        assert snap.diagnostics.has_anomalies
        assert "1 edges skipped due to invalid node references" in snap.diagnostics.summary()

    def test_unknown_node_type(self):
        b, a, _ = _small_builder()
        doc = b.document()
        doc["nodes"][a * STRIDE] = 99
        snap = decode_document(doc)
        assert snap.node_at(a).kind == "unknown"
        assert snap.diagnostics.unknown_node_types == 1

    def test_invalid_name_index(self):
        b, a, _ = _small_builder()
        doc = b.document()
        doc["nodes"][a * STRIDE + 1] = 10_000
        snap = decode_document(doc)
        assert snap.node_at(a).name == ""
        assert snap.diagnostics.invalid_string_refs == 1

    def test_negative_size_clamped(self):
        b, a, _ = _small_builder()
        doc = b.document()
        doc["nodes"][a * STRIDE + 3] = -5
        snap = decode_document(doc)
        assert snap.node_at(a).self_size == 0
        assert snap.diagnostics.negative_sizes == 1

    def test_declared_count_mismatch_is_a_warning(self):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["snapshot"]["node_count"] = 7
        snap = decode_document(doc)
        assert any("declares 7 nodes" in w for w in snap.diagnostics.warnings)

    def test_anomalies_logged_once(self, caplog):
        b, _, _ = _small_builder()
        doc = b.document()
        doc["edges"][2] = 100 * STRIDE
        doc["edges"][5] = 200 * STRIDE
        with caplog.at_level(logging.WARNING, logger="heap_analyzer"):
            decode_document(doc, label="bad")
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "2 edges skipped" in warnings[0].getMessage()


# ── Retained sizes ──────────────────────────────────────────────────────


def test_declared_retained_size_field_is_used():
    b, a, _ = _small_builder()
    doc = b.document()
    meta = doc["snapshot"]["meta"]
    meta["node_fields"].append("retained_size")
    meta["node_types"].append("number")
    flat = doc["nodes"]
    widened = []
    for start in range(0, len(flat), STRIDE):
        widened.extend(flat[start:start + STRIDE])
        widened.append(500)
    doc["nodes"] = widened
    for pos in range(2, len(doc["edges"]), 3):
        doc["edges"][pos] = doc["edges"][pos] // STRIDE * (STRIDE + 1)
    snap = decode_document(doc)
    assert snap.node_at(a).retained_size == 500
    assert not snap.retained_is_approximate


# ── Header ──────────────────────────────────────────────────────────────


def test_read_header(tmp_path):
    b, _, _ = _small_builder()
    path = tmp_path / "one.heapsnapshot"
    path.write_text(b.to_json())
    header = read_header(path)
    assert header.node_count == 3
    assert header.edge_count == 2
    assert header.byte_size == path.stat().st_size


def test_read_header_without_counts(tmp_path):
    path = tmp_path / "junk.heapsnapshot"
    path.write_text(json.dumps({"nothing": "here"}))
    with pytest.raises(ParseError):
        read_header(path)
