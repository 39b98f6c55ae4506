"""Daily window planning for a bounded batch."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import List
from zoneinfo import ZoneInfo

from models.records import Window, as_utc_aware

DAY = timedelta(days=1)


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Resolve an IANA time zone name, raising ``ValueError`` when unknown."""
    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfoNotFoundError or ValueError depending on the name
        raise ValueError(f"Unknown time zone: {tz_name!r}") from exc


class IntervalPlanner:
    """Splits ``[min, max]`` into consecutive 24 hour windows.

    The first window starts at local midnight of the earliest timestamp.
    Only whole days are planned: the trailing partial day after the last
    full window is not covered, so a span shorter than a day yields no
    windows at all.
    """

    def __init__(self, tz: tzinfo | str = timezone.utc) -> None:
        self.tz = tzinfo_from_name(tz) if isinstance(tz, str) else tz

    def floor_to_midnight(self, instant: datetime) -> datetime:
        local = as_utc_aware(instant).astimezone(self.tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def plan(self, min_timestamp: datetime, max_timestamp: datetime) -> List[Window]:
        # Windows are exactly 24 hours, so count and step in UTC and present in local time.
        origin = self.floor_to_midnight(min_timestamp).astimezone(timezone.utc)
        day_count = abs(as_utc_aware(max_timestamp) - origin) // DAY

        windows: List[Window] = []
        for index in range(day_count):
            start = (origin + index * DAY).astimezone(self.tz)
            end = (origin + (index + 1) * DAY).astimezone(self.tz)
            windows.append(Window(index=index, start=start, end=end))
        return windows
