"""Unit tests for the per-window aggregation logic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from models.records import Coordinate, GridCount, Measurement
from services.aggregator import WindowAggregator
from services.grid import GridMapper

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = START + timedelta(days=1)


def _measurement(latitude: float, longitude: float, timestamp: datetime) -> Measurement:
    """Helper to build measurements already mapped to the grid."""

    return GridMapper().assign(
        Measurement(coordinate=Coordinate(latitude, longitude), timestamp=timestamp)
    )


def test_aggregate_empty_iterable_returns_empty_set() -> None:
    assert WindowAggregator().aggregate([], START, END) == set()


def test_readings_in_same_cell_are_counted_together() -> None:
    t0 = START + timedelta(hours=3)
    measurements = [
        _measurement(0.0001, 0.0001, t0),
        _measurement(0.0002, 0.0002, t0),
    ]

    result = WindowAggregator().aggregate(measurements, START, END)

    assert result == {GridCount(cell=Coordinate(0.0, 0.0), count=2)}


def test_filter_is_inclusive_of_start_and_exclusive_of_end() -> None:
    measurements = [
        _measurement(1.0, 1.0, START),
        _measurement(1.0, 1.0, END - timedelta(microseconds=1)),
        _measurement(1.0, 1.0, END),
        _measurement(1.0, 1.0, START - timedelta(seconds=1)),
    ]

    result = WindowAggregator().aggregate(measurements, START, END)

    assert result == {GridCount(cell=Coordinate(1.0, 1.0), count=2)}


def test_window_without_matching_measurements_has_no_entries() -> None:
    measurements = [_measurement(1.0, 1.0, END + timedelta(hours=1))]

    assert WindowAggregator().aggregate(measurements, START, END) == set()


def test_counts_are_conserved() -> None:
    measurements = [
        _measurement(0.001 * (i % 7), 0.002 * (i % 3), START + timedelta(minutes=17 * i))
        for i in range(200)
    ]
    in_window = sum(1 for m in measurements if START <= m.timestamp < END)

    result = WindowAggregator().aggregate(measurements, START, END)

    assert sum(grid_count.count for grid_count in result) == in_window
    assert all(grid_count.count > 0 for grid_count in result)
    assert {gc.cell for gc in result} <= {m.rounded_coordinate for m in measurements}


def test_partial_counts_merge_to_the_same_total_in_any_order() -> None:
    aggregator = WindowAggregator()
    measurements = [
        _measurement(0.0005 * (i % 5), 0.0, START + timedelta(minutes=5 * i)) for i in range(120)
    ]
    partitions = [measurements[0:40], measurements[40:90], measurements[90:]]

    partials = [aggregator.count_partition(part, START, END) for part in partitions]
    forward = aggregator.merge_counts(partials)
    backward = aggregator.merge_counts(reversed(partials))

    assert forward == backward
    assert aggregator.to_grid_counts(forward) == aggregator.aggregate(measurements, START, END)


def test_unmapped_measurement_is_rejected() -> None:
    unmapped = Measurement(coordinate=Coordinate(1.0, 1.0), timestamp=START)

    with pytest.raises(ValueError):
        WindowAggregator().aggregate([unmapped], START, END)
