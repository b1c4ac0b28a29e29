"""Tests for growth pattern classification and the GrowthTracker session."""

from __future__ import annotations

from datetime import datetime

import pytest

from builders import SnapshotBuilder, array_heap, at
from heap_analyzer.analysis.growth import (
    GrowthTracker,
    classify_pattern,
    growth_severity,
    track_growth,
)
from heap_analyzer.analysis.models import GrowthPattern, NodeCategory, Severity
from heap_analyzer.errors import OutOfOrderSnapshotError

MB = 1024 * 1024


def array_history(histories):
    return next(
        h for h in histories
        if h.shape.name == "Array" and h.shape.category is NodeCategory.ARRAY
    )


class TestClassifyPattern:
    def test_monotonic(self):
        assert classify_pattern([1, 2, 3, 4]) is GrowthPattern.MONOTONIC

    def test_monotonic_with_plateau(self):
        assert classify_pattern([1, 1, 2, 2]) is GrowthPattern.MONOTONIC

    def test_shrinking_is_not_monotonic(self):
        assert classify_pattern([4, 3, 2, 1]) is GrowthPattern.STABLE

    def test_fluctuating(self):
        assert classify_pattern([1, 5, 2, 6]) is GrowthPattern.FLUCTUATING

    def test_significant(self):
        # one big rise, one small dip: up overall, no significant drop
        assert classify_pattern([100, 150, 148, 149]) is GrowthPattern.SIGNIFICANT

    def test_flat(self):
        assert classify_pattern([5, 5, 5]) is GrowthPattern.STABLE

    def test_too_short(self):
        assert classify_pattern([]) is GrowthPattern.STABLE
        assert classify_pattern([10]) is GrowthPattern.STABLE

    def test_ratio_is_configurable(self):
        series = [100, 105, 104, 109]
        assert classify_pattern(series, 0.10) is GrowthPattern.FLUCTUATING
        assert classify_pattern(series, 0.01) is GrowthPattern.SIGNIFICANT

    def test_deterministic(self):
        series = [3, 9, 4, 12, 11]
        assert len({classify_pattern(series) for _ in range(5)}) == 1


class TestSeverity:
    @pytest.mark.parametrize("growth,pattern,expected", [
        (60 * MB, GrowthPattern.STABLE, Severity.CRITICAL),
        (20 * MB, GrowthPattern.MONOTONIC, Severity.CRITICAL),
        (20 * MB, GrowthPattern.FLUCTUATING, Severity.HIGH),
        (6 * MB, GrowthPattern.SIGNIFICANT, Severity.MEDIUM),
        (2 * MB, GrowthPattern.MONOTONIC, Severity.MEDIUM),
        (2 * MB, GrowthPattern.FLUCTUATING, Severity.LOW),
        (100, GrowthPattern.MONOTONIC, Severity.LOW),
    ])
    def test_severity_table(self, growth, pattern, expected):
        assert growth_severity(growth, pattern) is expected

    def test_monotonic_outranks_fluctuating(self):
        order = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]
        mono = growth_severity(12 * MB, GrowthPattern.MONOTONIC)
        fluct = growth_severity(12 * MB, GrowthPattern.FLUCTUATING)
        assert order.index(mono) > order.index(fluct)


class TestTracker:
    def test_array_growth_scenario(self):
        histories = track_growth([
            array_heap(10, 80_000, captured_at=at(0)),
            array_heap(20, 80_000, captured_at=at(5)),
        ])
        h = array_history(histories)
        assert h.counts == [10, 20]
        assert h.total_sizes == [800_000, 1_600_000]
        assert h.pattern is GrowthPattern.MONOTONIC
        assert h.total_growth == 800_000
        assert h.count_growth == 10
        assert h.peak_size == 1_600_000
        assert h.growth_rate == 800_000
        assert not h.resolved
        assert 0 < len(h.examples) <= 3

    def test_identical_snapshots_are_stable(self):
        histories = track_growth([
            array_heap(10, 80_000, captured_at=at(0)),
            array_heap(10, 80_000, captured_at=at(5)),
        ])
        assert all(h.pattern is GrowthPattern.STABLE for h in histories)
        assert all(h.total_growth == 0 for h in histories)

    def test_out_of_order_rejected_without_state_change(self):
        tracker = GrowthTracker()
        tracker.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        tracker.process_snapshot(array_heap(8, 500, captured_at=at(10)))
        before = tracker.report()
        with pytest.raises(OutOfOrderSnapshotError) as exc:
            tracker.process_snapshot(array_heap(50, 500, captured_at=at(5)))
        assert exc.value.previous == at(10)
        assert exc.value.received == at(5)
        assert tracker.report() == before
        assert tracker.snapshots_processed == 2

    def test_equal_timestamps_rejected(self):
        tracker = GrowthTracker()
        tracker.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        with pytest.raises(OutOfOrderSnapshotError):
            tracker.process_snapshot(array_heap(5, 500, captured_at=at(0)))

    def test_naive_and_aware_capture_times_compare(self):
        tracker = GrowthTracker()
        tracker.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        tracker.process_snapshot(array_heap(8, 500, captured_at=datetime(2030, 1, 1)))
        with pytest.raises(OutOfOrderSnapshotError):
            tracker.process_snapshot(array_heap(9, 500, captured_at=datetime(2024, 1, 1)))
        assert tracker.snapshots_processed == 2

    def test_track_growth_rejects_unsorted(self):
        with pytest.raises(OutOfOrderSnapshotError):
            track_growth([
                array_heap(5, 500, captured_at=at(3)),
                array_heap(5, 500, captured_at=at(1)),
            ])

    def test_reset(self):
        tracker = GrowthTracker()
        tracker.process_snapshot(array_heap(5, 500, captured_at=at(10)))
        tracker.reset()
        assert tracker.report() == []
        # earlier timestamps are fine after a reset
        tracker.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        assert tracker.snapshots_processed == 1

    def test_independent_sessions(self):
        a, b = GrowthTracker(), GrowthTracker()
        a.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        b.process_snapshot(array_heap(5, 500, captured_at=at(0)))
        a.process_snapshot(array_heap(9, 500, captured_at=at(1)))
        assert b.snapshots_processed == 1
        assert array_history(a.report()).counts == [5, 9]
        assert array_history(b.report()).counts == [5]

    def test_vanished_shape_is_resolved(self):
        def with_maps(count: int, minute: int):
            b = SnapshotBuilder()
            for _ in range(count):
                m = b.add_node("object", "Map", 200)
                b.add_edge(b.root, m, "property", "m")
            return b.build(captured_at=at(minute))

        tracker = GrowthTracker()
        tracker.process_snapshot(with_maps(3, 0))
        tracker.process_snapshot(with_maps(6, 1))
        tracker.process_snapshot(with_maps(0, 2))
        maps = next(h for h in tracker.report() if h.shape.name == "Map")
        assert maps.resolved
        assert maps.counts == [3, 6, 0]
        assert maps.last_seen == 1
        assert maps.pattern is not GrowthPattern.MONOTONIC

        tracker.process_snapshot(with_maps(0, 3))
        tracker.process_snapshot(with_maps(4, 4))
        maps = next(h for h in tracker.report() if h.shape.name == "Map")
        assert not maps.resolved
        assert maps.counts == [3, 6, 0, 0, 4]
        assert maps.last_seen == 4

    def test_new_shape_starts_at_first_sighting(self):
        tracker = GrowthTracker()
        tracker.process_snapshot(array_heap(0, 500, captured_at=at(0)))
        tracker.process_snapshot(array_heap(4, 500, captured_at=at(1)))
        h = array_history(tracker.report())
        assert h.first_seen == 1
        assert h.counts == [4]

    def test_sharded_census_gives_identical_report(self):
        snaps = [
            array_heap(10, 500, captured_at=at(0), extra=7),
            array_heap(25, 500, captured_at=at(1), extra=3),
            array_heap(40, 500, captured_at=at(2), extra=11),
        ]
        single = track_growth(snaps)
        sharded = track_growth(snaps, workers=4)
        assert [h.model_dump() for h in single] == [h.model_dump() for h in sharded]

    def test_report_sorted_by_growth(self):
        histories = track_growth([
            array_heap(2, 500, captured_at=at(0), extra=1),
            array_heap(30, 500, captured_at=at(1), extra=2),
        ])
        growths = [h.total_growth for h in histories]
        assert growths == sorted(growths, reverse=True)
