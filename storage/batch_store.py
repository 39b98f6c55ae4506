from __future__ import annotations
import io
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, Optional, TextIO

from settings import get_settings


class BatchStore:
    """Keeps uploaded reading batches so a run can be re-derived later."""

    def __init__(self, root_path: Optional[Path] = None) -> None:
        self._objects: Dict[str, bytes] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)

    def put_batch(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = data
            if self.root_path:
                path = self.root_path / key
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)

    def has_batch(self, key: str) -> bool:
        with self._lock:
            if key in self._objects:
                return True
        return bool(self.root_path and (self.root_path / key).is_file())

    @contextmanager
    def open_batch(self, key: str, encoding: str = "utf-8") -> Iterator[TextIO]:
        """Yield a text handle over the stored batch for CSV parsing."""
        if self.root_path and (self.root_path / key).is_file():
            with (self.root_path / key).open("r", encoding=encoding, newline="") as handle:
                yield handle
            return

        with self._lock:
            data = self._objects.get(key)
        if data is None:
            raise KeyError(f"Batch {key!r} not found.")

        buffer = io.StringIO(data.decode(encoding), newline="")
        try:
            yield buffer
        finally:
            buffer.close()


@lru_cache
def build_default_batch_store(root_path: Optional[str] = None) -> BatchStore:
    batch_root = get_settings().batch_root_path if root_path is None else root_path
    return BatchStore(root_path=Path(batch_root) if batch_root else None)
