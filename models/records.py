"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional


def as_utc_aware(instant: datetime) -> datetime:
    """Return ``instant`` in UTC, treating naive datetimes as already UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A latitude/longitude pair. Hashing is exact on the stored floats."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Reading:
    """A single geo-tagged reading delivered by the ingestion layer."""

    latitude: float
    longitude: float
    timestamp: datetime

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class Measurement:
    """A reading in pipeline form, carrying the grid cell it falls in.

    ``rounded_coordinate`` is attached once through :meth:`with_rounded`
    and never changes afterwards.
    """

    coordinate: Coordinate
    timestamp: datetime
    rounded_coordinate: Optional[Coordinate] = None

    @classmethod
    def from_reading(cls, reading: Reading) -> "Measurement":
        return cls(
            coordinate=Coordinate(float(reading.latitude), float(reading.longitude)),
            timestamp=as_utc_aware(reading.timestamp),
        )

    def with_rounded(self, rounded: Coordinate) -> "Measurement":
        if self.rounded_coordinate is not None:
            raise ValueError("Measurement already has a rounded coordinate.")
        return replace(self, rounded_coordinate=rounded)


@dataclass(frozen=True, slots=True)
class GridCount:
    """Number of measurements that fell in one grid cell during one window."""

    cell: Coordinate
    count: int


@dataclass(frozen=True, slots=True)
class HeatMapRecord:
    """Persisted unit: one non-empty grid cell on one day."""

    latitude: float
    longitude: float
    total_count: int
    timestamp: datetime

    @classmethod
    def from_grid_count(cls, grid_count: GridCount, day: datetime) -> "HeatMapRecord":
        return cls(
            latitude=grid_count.cell.latitude,
            longitude=grid_count.cell.longitude,
            total_count=grid_count.count,
            timestamp=day,
        )


@dataclass(frozen=True, slots=True)
class Window:
    """Half-open daily interval ``[start, end)``."""

    index: int
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def describe(self) -> str:
        return f"#{self.index} [{self.start.isoformat()}, {self.end.isoformat()})"
