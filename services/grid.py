"""Snap coordinates to the fixed heat map grid."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from models.records import Coordinate, Measurement

GRID_SIZE = 0.0005

_SCALE = Decimal(10000)
_STEP = Decimal(5)
_HALF = Decimal("0.5")


def round_to_grid(value: float) -> float:
    """Round one axis to the nearest multiple of ``GRID_SIZE``.

    Ties go toward positive infinity, so -0.00025 becomes 0 and 0.00025
    becomes 0.0005. The value is parsed from its shortest repr so the
    arithmetic is exact in decimal and identical on every platform.
    """
    scaled = Decimal(repr(float(value))) * _SCALE
    units = (scaled / _STEP + _HALF).to_integral_value(rounding=ROUND_FLOOR)
    return float(units * _STEP / _SCALE) + 0.0


class GridMapper:
    """Maps coordinates to the center of the grid cell that contains them."""

    def round(self, coordinate: Coordinate) -> Coordinate:
        return Coordinate(
            round_to_grid(coordinate.latitude),
            round_to_grid(coordinate.longitude),
        )

    def assign(self, measurement: Measurement) -> Measurement:
        return measurement.with_rounded(self.round(measurement.coordinate))
