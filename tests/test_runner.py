from __future__ import annotations

import asyncio
import io
import threading
from typing import Sequence

import pytest
from fastapi import BackgroundTasks, UploadFile

from app.schemas import RunStatus
from datastore.heatmap_table import HeatMapTable
from datastore.run_table import RunTable
from models.records import HeatMapRecord
from services.errors import RunInProgressError
from services.pipeline import HeatMapPipeline
from services.runner import RunService
from storage.batch_store import BatchStore

THREE_DAYS = """latitude,longitude,timestamp
0.0001,0.0001,2024-01-01T00:30:00Z
0.0002,0.0002,2024-01-01T02:00:00Z
0.0001,0.0001,2024-01-02T01:00:00Z
0.0001,0.0001,2024-01-03T10:00:00Z
"""


class FlakySink:
    def __init__(self, table: HeatMapTable, failures: int) -> None:
        self.table = table
        self.failures = failures

    def write(self, records: Sequence[HeatMapRecord]) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("table unavailable")
        self.table.write(records)


def _upload(content: str, filename: str = "readings.csv") -> UploadFile:
    return UploadFile(filename=filename, file=io.BytesIO(content.encode("utf-8")))


def _await_run(runner: RunService, run_id: str) -> None:
    with runner._futures_lock:
        future = runner._futures.get(run_id)
    if future is not None:
        future.result(timeout=5)


def _submit(runner: RunService, content: str) -> str:
    tasks = BackgroundTasks()
    run_id = runner.enqueue_file(tasks, _upload(content))
    asyncio.run(tasks())
    _await_run(runner, run_id)
    return run_id


@pytest.fixture()
def table() -> HeatMapTable:
    return HeatMapTable(name="test")


@pytest.fixture()
def runner(tmp_path, table: HeatMapTable) -> RunService:
    service = RunService(
        store=BatchStore(root_path=tmp_path / "batches"),
        runs=RunTable(persistence_path=tmp_path / "runs.json"),
        pipeline=HeatMapPipeline(sink=table, workers=1),
        workers=1,
    )
    yield service
    service.shutdown()


def test_successful_run(runner: RunService, table: HeatMapTable) -> None:
    run_id = _submit(runner, THREE_DAYS)

    result = runner.fetch_result(run_id)
    assert result.status is RunStatus.processed
    assert result.reading_count == 4
    assert result.window_count == 2
    assert result.record_count == 2
    assert result.errors == []
    assert result.processed_at is not None
    assert [(row.latitude, row.total_count) for row in table.scan()] == [(0.0, 2), (0.0, 1)]


def test_skipped_rows_make_the_run_partial(runner: RunService) -> None:
    run_id = _submit(runner, THREE_DAYS + "1.0,not-a-number,2024-01-01T00:00:00Z\n")

    result = runner.fetch_result(run_id)
    assert result.status is RunStatus.partial
    assert [(e.row_number, e.reason) for e in result.errors] == [(6, "invalid longitude")]


def test_batch_without_valid_rows_fails(runner: RunService) -> None:
    run_id = _submit(runner, "latitude,longitude,timestamp\n1.0,2.0,soon\n")

    result = runner.fetch_result(run_id)
    assert result.status is RunStatus.failed
    assert any("empty batch" in error.reason for error in result.errors)


def test_missing_header_fails(runner: RunService) -> None:
    run_id = _submit(runner, "lat,lon,time\n1.0,2.0,2024-01-01T00:00:00Z\n")

    result = runner.fetch_result(run_id)
    assert result.status is RunStatus.failed
    assert "missing required columns" in result.errors[0].reason


def test_empty_upload_is_rejected(runner: RunService) -> None:
    with pytest.raises(ValueError, match="empty"):
        runner.enqueue_file(BackgroundTasks(), _upload(""))


def test_sink_failure_is_reported_and_retry_rebuilds(tmp_path, table: HeatMapTable) -> None:
    runner = RunService(
        store=BatchStore(root_path=tmp_path / "batches"),
        runs=RunTable(),
        pipeline=HeatMapPipeline(sink=FlakySink(table, failures=1), workers=1),
        workers=1,
    )
    try:
        run_id = _submit(runner, THREE_DAYS)

        failed = runner.fetch_result(run_id)
        assert failed.status is RunStatus.failed
        assert failed.failed_window is not None
        assert failed.failed_window.index == 0
        assert "table unavailable" in failed.failed_window.reason
        assert table.scan() == []

        runner.retry(run_id)
        _await_run(runner, run_id)

        retried = runner.fetch_result(run_id)
        assert retried.status is RunStatus.processed
        assert retried.failed_window is None
        assert len(table.scan()) == 2
    finally:
        runner.shutdown()


def test_cancel_and_retry_while_active(tmp_path, table: HeatMapTable) -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingSink:
        def write(self, records: Sequence[HeatMapRecord]) -> None:
            entered.set()
            release.wait(timeout=5)
            table.write(records)

    runner = RunService(
        store=BatchStore(),
        runs=RunTable(),
        pipeline=HeatMapPipeline(sink=BlockingSink(), workers=1),
        workers=1,
    )
    try:
        run_id = runner.enqueue_file(BackgroundTasks(), _upload(THREE_DAYS))
        assert entered.wait(timeout=5)

        with pytest.raises(RunInProgressError):
            runner.retry(run_id)
        assert runner.cancel(run_id) is True

        release.set()
        _await_run(runner, run_id)

        result = runner.fetch_result(run_id)
        assert result.status is RunStatus.cancelled
        assert result.window_count == 1
        assert len(table.scan()) == 1
        assert runner.cancel(run_id) is False
    finally:
        release.set()
        runner.shutdown()


def test_unknown_run_raises_key_error(runner: RunService) -> None:
    with pytest.raises(KeyError):
        runner.fetch_result("missing")
    with pytest.raises(KeyError):
        runner.retry("missing")


class CountingPipeline(HeatMapPipeline):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.run_calls = 0

    def run(self, readings, **kwargs):
        self.run_calls += 1
        return super().run(readings, **kwargs)


def test_concurrent_retries_start_a_single_run(tmp_path, table: HeatMapTable) -> None:
    gate = threading.Event()
    gate.set()
    entered = threading.Event()

    class GatedSink:
        def write(self, records: Sequence[HeatMapRecord]) -> None:
            entered.set()
            gate.wait(timeout=5)
            table.write(records)

    pipeline = CountingPipeline(sink=GatedSink(), workers=1)
    runner = RunService(
        store=BatchStore(root_path=tmp_path / "batches"),
        runs=RunTable(),
        pipeline=pipeline,
        workers=2,
    )
    try:
        run_id = _submit(runner, THREE_DAYS)
        assert pipeline.run_calls == 1
        gate.clear()
        entered.clear()

        barrier = threading.Barrier(2)
        outcomes: list = []

        def _retry() -> None:
            barrier.wait(timeout=5)
            try:
                runner.retry(run_id)
            except RunInProgressError:
                outcomes.append("rejected")
            else:
                outcomes.append("started")

        threads = [threading.Thread(target=_retry) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert sorted(outcomes) == ["rejected", "started"]
        assert entered.wait(timeout=5)
        gate.set()
        _await_run(runner, run_id)

        assert pipeline.run_calls == 2
        assert runner.fetch_result(run_id).status is RunStatus.processed
    finally:
        gate.set()
        runner.shutdown()
