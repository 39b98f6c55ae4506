from __future__ import annotations

from typing import Iterable

from datastore.heatmap_table import build_default_heatmap_table
from datastore.run_table import build_default_run_table
from services.pipeline import build_default_pipeline
from settings import get_settings
from storage.batch_store import build_default_batch_store


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


CACHES = (
    get_settings,
    build_default_batch_store,
    build_default_heatmap_table,
    build_default_run_table,
    build_default_pipeline,
)


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    batch_root = tmp_path / "batches"
    table_path = tmp_path / "heat.json"

    monkeypatch.setenv("HEATMAP_BATCH_ROOT_PATH", str(batch_root))
    monkeypatch.setenv("HEATMAP_TABLE_NAME", "custom-table")
    monkeypatch.setenv("HEATMAP_PERSISTENCE_PATH", str(table_path))
    monkeypatch.setenv("RUN_TABLE_PERSISTENCE_PATH", "")
    monkeypatch.setenv("HEATMAP_TIMEZONE", "Europe/Amsterdam")
    monkeypatch.setenv("PIPELINE_WORKER_COUNT", "3")
    monkeypatch.setenv("PIPELINE_PARTITION_SIZE", "250")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    _clear_caches(CACHES)

    try:
        settings = get_settings()
        pipeline = build_default_pipeline()

        assert settings.log_level == "DEBUG"
        assert build_default_batch_store().root_path == batch_root
        assert build_default_run_table().persistence_path is None
        assert pipeline.sink is build_default_heatmap_table()
        assert pipeline.sink.name == "custom-table"
        assert pipeline.sink.persistence_path == table_path
        assert str(pipeline.planner.tz) == "Europe/Amsterdam"
        assert pipeline.workers == 3
        assert pipeline.partition_size == 250
    finally:
        _clear_caches(CACHES)


def test_invalid_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("PIPELINE_WORKER_COUNT", "-2")
    monkeypatch.setenv("PIPELINE_PARTITION_SIZE", "lots")
    monkeypatch.setenv("HEATMAP_TIMEZONE", "  ")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.pipeline_workers == 4
        assert settings.partition_size == 10_000
        assert settings.timezone == "UTC"
    finally:
        get_settings.cache_clear()
