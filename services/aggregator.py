"""Per-window counting of measurements by grid cell."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, Set

from models.records import Coordinate, GridCount, Measurement


class WindowAggregator:
    """Pure aggregation component that can be unit tested in isolation.

    Counting is split into :meth:`count_partition`, which can run on any
    subset of the measurements, and :meth:`merge_counts`, which sums the
    partial counters. Summing is associative and commutative, so partitions
    may be counted on separate workers and merged in any order.
    """

    def count_partition(
        self,
        measurements: Iterable[Measurement],
        start: datetime,
        end: datetime,
    ) -> Counter[Coordinate]:
        counts: Counter[Coordinate] = Counter()
        for measurement in measurements:
            if not start <= measurement.timestamp < end:
                continue
            cell = measurement.rounded_coordinate
            if cell is None:
                raise ValueError("Measurement has no rounded coordinate; map it to the grid first.")
            counts[cell] += 1
        return counts

    @staticmethod
    def merge_counts(partials: Iterable[Counter[Coordinate]]) -> Counter[Coordinate]:
        merged: Counter[Coordinate] = Counter()
        for partial in partials:
            merged.update(partial)
        return merged

    @staticmethod
    def to_grid_counts(counts: Counter[Coordinate]) -> Set[GridCount]:
        return {GridCount(cell=cell, count=count) for cell, count in counts.items() if count > 0}

    def aggregate(
        self,
        measurements: Iterable[Measurement],
        start: datetime,
        end: datetime,
    ) -> Set[GridCount]:
        return self.to_grid_counts(self.count_partition(measurements, start, end))
