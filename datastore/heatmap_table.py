from __future__ import annotations

import json
from datetime import date
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Sequence

from app.schemas import HeatMapEntry
from models.records import HeatMapRecord
from settings import get_settings


class HeatMapTable:
    """Heat map sink keyed by ``(latitude, longitude, timestamp)``.

    ``write`` is all-or-nothing: the batch is validated and the new table
    state is persisted before it replaces the in-memory state. Writing the
    same window again overwrites its rows, so re-running a window is safe.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, HeatMapEntry] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def write(self, records: Sequence[HeatMapRecord]) -> None:
        entries = [HeatMapEntry.from_record(record) for record in records]
        if not entries:
            return
        with self._lock:
            staged = dict(self._items)
            for entry in entries:
                staged[entry.key] = entry
            self._persist(staged)
            self._items = staged

    def scan(self) -> list[HeatMapEntry]:
        """Return deep copies of all stored rows ordered by day then cell."""
        with self._lock:
            items = [item.model_copy(deep=True) for item in self._items.values()]
        return sorted(items, key=lambda item: (item.timestamp, item.latitude, item.longitude))

    def query(self, day: Optional[date] = None) -> list[HeatMapEntry]:
        items = self.scan()
        if day is None:
            return items
        return [item for item in items if item.timestamp.date() == day]

    def _persist(self, items: Dict[str, HeatMapEntry]) -> None:
        if not self.persistence_path:
            return
        payload = [item.model_dump(mode="json", by_alias=True) for item in items.values()]
        tmp_path = self.persistence_path.with_suffix(self.persistence_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        tmp_path.replace(self.persistence_path)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            data = json.loads(self.persistence_path.read_text() or "[]")
        except (OSError, json.JSONDecodeError):
            data = []

        for payload in data:
            entry = HeatMapEntry.model_validate(payload)
            self._items[entry.key] = entry


@lru_cache
def build_default_heatmap_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> HeatMapTable:
    settings = get_settings()
    table_name = settings.table_name if name is None else name
    table_path = settings.table_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return HeatMapTable(name=table_name, persistence_path=persistence)
