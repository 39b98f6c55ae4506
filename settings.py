from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_BATCH_ROOT_ENV = "HEATMAP_BATCH_ROOT_PATH"
_TABLE_NAME_ENV = "HEATMAP_TABLE_NAME"
_TABLE_PATH_ENV = "HEATMAP_PERSISTENCE_PATH"
_RUN_TABLE_PATH_ENV = "RUN_TABLE_PERSISTENCE_PATH"
_TIMEZONE_ENV = "HEATMAP_TIMEZONE"
_WORKER_COUNT_ENV = "PIPELINE_WORKER_COUNT"
_PARTITION_SIZE_ENV = "PIPELINE_PARTITION_SIZE"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    batch_root_path: Optional[str]
    table_name: str
    table_persistence_path: Optional[str]
    run_table_persistence_path: Optional[str]
    timezone: str
    pipeline_workers: int
    partition_size: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    return _read_str_env(_LOG_LEVEL_ENV, default).upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        batch_root_path=_read_optional_env(_BATCH_ROOT_ENV, "./tmp/batches"),
        table_name=_read_str_env(_TABLE_NAME_ENV, "heat_map_batch"),
        table_persistence_path=_read_optional_env(_TABLE_PATH_ENV, "./tmp/heat_map.json"),
        run_table_persistence_path=_read_optional_env(_RUN_TABLE_PATH_ENV, "./tmp/runs.json"),
        timezone=_read_str_env(_TIMEZONE_ENV, "UTC"),
        pipeline_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        partition_size=_read_positive_int(_PARTITION_SIZE_ENV, 10_000),
        log_level=_read_log_level("INFO"),
    )
