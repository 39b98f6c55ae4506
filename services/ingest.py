"""CSV ingestion of geo-tagged readings."""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, TextIO

from app.schemas import ProcessingError
from models.records import Reading

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("latitude", "longitude", "timestamp")


@dataclass
class ParsedBatch:
    readings: List[Reading] = field(default_factory=list)
    errors: List[ProcessingError] = field(default_factory=list)


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_coordinate(value: str, lower: float, upper: float) -> float:
    parsed = float(value)
    if not math.isfinite(parsed) or not lower <= parsed <= upper:
        raise ValueError(f"coordinate {value!r} out of range")
    return parsed


def parse_readings(stream: TextIO, source: Optional[str] = None) -> ParsedBatch:
    """Read ``latitude,longitude,timestamp`` rows, skipping invalid ones.

    A missing header raises ``ValueError``. Invalid rows are collected as
    :class:`ProcessingError` entries and logged; the rest of the file is
    still read.
    """
    reader = csv.DictReader(stream)
    if not reader.fieldnames:
        raise ValueError("CSV file is missing a header row.")

    normalized = {name.lower().strip(): name for name in reader.fieldnames}
    missing = [column for column in REQUIRED_COLUMNS if column not in normalized]
    if missing:
        raise ValueError(f"CSV missing required columns: {', '.join(missing)}")

    batch = ParsedBatch()

    def skip(row_number: int, reason: str) -> None:
        batch.errors.append(ProcessingError(row_number=row_number, reason=reason))
        logger.warning(
            "Skipping row",
            extra={"row_number": row_number, "reason": reason, "run_id": source},
        )

    for row_number, row in enumerate(reader, start=2):
        raw = {column: (row.get(normalized[column]) or "").strip() for column in REQUIRED_COLUMNS}

        empty = [column for column in REQUIRED_COLUMNS if not raw[column]]
        if empty:
            skip(row_number, f"missing {empty[0]}")
            continue

        try:
            latitude = _parse_coordinate(raw["latitude"], -90.0, 90.0)
        except ValueError:
            skip(row_number, "invalid latitude")
            continue

        try:
            longitude = _parse_coordinate(raw["longitude"], -180.0, 180.0)
        except ValueError:
            skip(row_number, "invalid longitude")
            continue

        try:
            timestamp = parse_timestamp(raw["timestamp"])
        except ValueError:
            skip(row_number, "invalid timestamp")
            continue

        batch.readings.append(Reading(latitude=latitude, longitude=longitude, timestamp=timestamp))

    return batch
