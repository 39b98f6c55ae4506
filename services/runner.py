"""Background execution of uploaded heat map batches."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Optional
from uuid import uuid4

from fastapi import BackgroundTasks, UploadFile

from app.schemas import ProcessingError, RunResult, RunStatus, WindowFailure
from datastore.run_table import RunTable, build_default_run_table
from services.errors import (
    PipelineCancelledError,
    RunInProgressError,
    SinkWriteError,
)
from services.ingest import parse_readings
from services.pipeline import HeatMapPipeline, build_default_pipeline
from settings import get_settings
from storage.batch_store import BatchStore, build_default_batch_store

logger = logging.getLogger(__name__)


class RunService:
    """Coordinates batch storage, background pipeline runs and status lookups."""

    def __init__(
        self,
        store: BatchStore,
        runs: RunTable,
        pipeline: HeatMapPipeline,
        workers: int = 2,
    ) -> None:
        self.store = store
        self.runs = runs
        self.pipeline = pipeline
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="heatmap-run")
        self._futures: Dict[str, Future[None]] = {}
        self._cancellations: Dict[str, threading.Event] = {}
        self._futures_lock = Lock()

    def enqueue_file(self, background_tasks: BackgroundTasks, file: UploadFile) -> str:
        """Store an uploaded CSV batch and schedule its heat map run."""
        run_id = str(uuid4())
        filename = Path(file.filename or "readings.csv").name
        key = f"{run_id}/{filename}"

        file.file.seek(0)
        contents = file.file.read()
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        if not contents:
            raise ValueError("Uploaded file is empty.")

        self.store.put_batch(key, contents)
        self._submit(run_id, key, uploaded_at=datetime.now(timezone.utc))
        background_tasks.add_task(file.close)
        return run_id

    def retry(self, run_id: str) -> None:
        """Re-derive every window of a finished run from its stored batch."""
        result = self.fetch_result(run_id)
        key = result.batch_key
        if key is None or not self.store.has_batch(key):
            raise KeyError(f"Batch for run {run_id!r} not found.")
        self._submit(run_id, key, uploaded_at=result.uploaded_at, reject_active=True)

    def cancel(self, run_id: str) -> bool:
        """Ask an active run to stop after its current window."""
        self.fetch_result(run_id)
        with self._futures_lock:
            event = self._cancellations.get(run_id)
        if event is None:
            return False
        event.set()
        return True

    def fetch_result(self, run_id: str) -> RunResult:
        result = self.runs.get_item(run_id)
        if result is None:
            raise KeyError(f"Heat map run {run_id!r} not found.")
        return result

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        with self._futures_lock:
            for event in self._cancellations.values():
                event.set()
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _submit(
        self,
        run_id: str,
        key: str,
        uploaded_at: datetime,
        reject_active: bool = False,
    ) -> None:
        event = threading.Event()
        # The active check and the registration share one lock hold.
        with self._futures_lock:
            if reject_active and run_id in self._futures:
                raise RunInProgressError(f"Run {run_id!r} is still active.")
            self.runs.put_item(
                RunResult(
                    run_id=run_id,
                    status=RunStatus.uploaded,
                    uploaded_at=uploaded_at,
                    batch_key=key,
                )
            )
            self._cancellations[run_id] = event
            future = self.executor.submit(
                self._process_batch,
                run_id=run_id,
                key=key,
                uploaded_at=uploaded_at,
                cancellation=event,
            )
            self._futures[run_id] = future

    def _clear_future(self, run_id: str, cancellation: threading.Event) -> None:
        with self._futures_lock:
            if self._cancellations.get(run_id) is cancellation:
                self._futures.pop(run_id, None)
                self._cancellations.pop(run_id, None)

    def _process_batch(
        self,
        run_id: str,
        key: str,
        uploaded_at: datetime,
        cancellation: threading.Event,
    ) -> None:
        result = RunResult(
            run_id=run_id,
            status=RunStatus.processing,
            uploaded_at=uploaded_at,
            batch_key=key,
        )
        self.runs.put_item(result)

        try:
            with self.store.open_batch(key) as handle:
                parsed = parse_readings(handle, source=run_id)
            result.errors = list(parsed.errors)
            result.reading_count = len(parsed.readings)

            report = self.pipeline.run(parsed.readings, run_id=run_id, cancellation=cancellation)
            result.window_count = len(report.windows)
            result.record_count = report.record_count
            result.processing_ms = report.processing_ms
            result.status = RunStatus.partial if result.errors else RunStatus.processed
        except ValueError as exc:
            # Empty batches and unreadable headers both land here.
            result.status = RunStatus.failed
            result.errors.append(ProcessingError(row_number=1, reason=str(exc)))
        except SinkWriteError as exc:
            result.status = RunStatus.failed
            result.window_count = len(exc.committed)
            result.failed_window = WindowFailure(
                index=exc.window.index,
                start=exc.window.start,
                end=exc.window.end,
                reason=exc.reason,
            )
        except PipelineCancelledError as exc:
            result.status = RunStatus.cancelled
            result.window_count = len(exc.committed)
        except Exception as exc:  # pragma: no cover - defensive catch-all
            logger.exception("Heat map run failed", extra={"run_id": run_id})
            result.status = RunStatus.failed
            result.errors.append(ProcessingError(row_number=1, reason=str(exc)))

        result.processed_at = datetime.now(timezone.utc)
        self.runs.put_item(result)
        self._clear_future(run_id, cancellation)
        logger.info(
            "Heat map run finished",
            extra={"run_id": run_id, "status": result.status.value},
        )


@lru_cache
def build_default_runner(workers: Optional[int] = None) -> RunService:
    """Factory that wires the run service with the configured stores."""
    return RunService(
        store=build_default_batch_store(),
        runs=build_default_run_table(),
        pipeline=build_default_pipeline(),
        workers=workers or get_settings().pipeline_workers,
    )
