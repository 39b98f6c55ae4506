"""Batch heat map orchestration: grid mapping, daily windows and sink writes."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from datastore.heatmap_table import build_default_heatmap_table
from models.records import HeatMapRecord, Measurement, Reading, Window
from services.aggregator import WindowAggregator
from services.errors import EmptyInputError, PipelineCancelledError, SinkWriteError
from services.grid import GridMapper
from services.intervals import IntervalPlanner
from settings import get_settings

logger = logging.getLogger(__name__)


class HeatMapSink(Protocol):
    """Durable store for heat map records; each call is all-or-nothing."""

    def write(self, records: Sequence[HeatMapRecord]) -> None:
        ...


@dataclass(frozen=True)
class WindowResult:
    window: Window
    reading_count: int
    record_count: int


@dataclass
class RunReport:
    """Outcome of one pipeline run."""

    reading_count: int
    min_timestamp: datetime
    max_timestamp: datetime
    windows: List[WindowResult] = field(default_factory=list)
    processing_ms: Optional[int] = None

    @property
    def record_count(self) -> int:
        return sum(result.record_count for result in self.windows)


def _partition(items: Sequence, size: int) -> List[Sequence]:
    return [items[offset : offset + size] for offset in range(0, len(items), size)]


class HeatMapPipeline:
    """Turns a batch of readings into per-day grid counts written to a sink.

    The pipeline holds no state between runs. Preparation and counting are
    spread over a thread pool in fixed-size partitions; windows are written
    one at a time in chronological order so every run is reproducible.
    """

    def __init__(
        self,
        sink: HeatMapSink,
        grid_mapper: Optional[GridMapper] = None,
        planner: Optional[IntervalPlanner] = None,
        aggregator: Optional[WindowAggregator] = None,
        workers: int = 4,
        partition_size: int = 10_000,
    ) -> None:
        if partition_size <= 0:
            raise ValueError("partition_size must be positive.")
        self.sink = sink
        self.grid_mapper = grid_mapper or GridMapper()
        self.planner = planner or IntervalPlanner()
        self.aggregator = aggregator or WindowAggregator()
        self.workers = workers
        self.partition_size = partition_size

    def run(
        self,
        readings: Iterable[Reading],
        *,
        run_id: Optional[str] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> RunReport:
        """Process one batch; raises :class:`EmptyInputError` when it is empty."""
        start_time = time.perf_counter()
        batch = list(readings)
        if not batch:
            raise EmptyInputError()

        log_extra = {"run_id": run_id, "reading_count": len(batch)}
        logger.info("Starting heat map run", extra=log_extra)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="heatmap") as executor:
            partitions = list(
                executor.map(self._prepare_partition, _partition(batch, self.partition_size))
            )
            min_timestamp, max_timestamp = self._extrema(partitions)
            windows = self.planner.plan(min_timestamp, max_timestamp)
            report = RunReport(
                reading_count=len(batch),
                min_timestamp=min_timestamp,
                max_timestamp=max_timestamp,
            )

            if not windows:
                logger.warning(
                    "Batch spans less than one full day; no windows to process",
                    extra={**log_extra, "window_start": min_timestamp, "window_end": max_timestamp},
                )

            for window in windows:
                if cancellation is not None and cancellation.is_set():
                    raise PipelineCancelledError(
                        committed=[result.window for result in report.windows],
                        remaining=len(windows) - window.index,
                    )
                report.windows.append(
                    self._process_window(executor, partitions, window, report, run_id)
                )

        report.processing_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Finished heat map run",
            extra={
                **log_extra,
                "record_count": report.record_count,
                "processing_ms": report.processing_ms,
            },
        )
        return report

    def _prepare_partition(self, readings: Sequence[Reading]) -> List[Measurement]:
        return [self.grid_mapper.assign(Measurement.from_reading(reading)) for reading in readings]

    @staticmethod
    def _extrema(partitions: Sequence[Sequence[Measurement]]) -> Tuple[datetime, datetime]:
        bounds = [
            (
                min(m.timestamp for m in partition),
                max(m.timestamp for m in partition),
            )
            for partition in partitions
            if partition
        ]
        if not bounds:
            raise EmptyInputError()
        return min(low for low, _ in bounds), max(high for _, high in bounds)

    def _process_window(
        self,
        executor: Executor,
        partitions: Sequence[Sequence[Measurement]],
        window: Window,
        report: RunReport,
        run_id: Optional[str],
    ) -> WindowResult:
        partials = executor.map(
            lambda part: self.aggregator.count_partition(part, window.start, window.end),
            partitions,
        )
        counts = self.aggregator.merge_counts(partials)
        grid_counts = self.aggregator.to_grid_counts(counts)
        records = [
            HeatMapRecord.from_grid_count(grid_count, window.start)
            for grid_count in sorted(grid_counts, key=lambda gc: (gc.cell.latitude, gc.cell.longitude))
        ]

        log_extra = {
            "run_id": run_id,
            "window_index": window.index,
            "window_start": window.start.isoformat(),
            "window_end": window.end.isoformat(),
            "record_count": len(records),
        }
        try:
            self.sink.write(records)
        except Exception as exc:
            logger.error("Sink rejected heat map window", extra={**log_extra, "reason": str(exc)})
            raise SinkWriteError(
                window=window,
                committed=[result.window for result in report.windows],
                reason=str(exc),
            ) from exc

        logger.info("Committed heat map window", extra=log_extra)
        return WindowResult(
            window=window,
            reading_count=sum(counts.values()),
            record_count=len(records),
        )


@lru_cache
def build_default_pipeline(workers: Optional[int] = None) -> HeatMapPipeline:
    """Factory that wires the pipeline to the configured heat map table."""
    settings = get_settings()
    return HeatMapPipeline(
        sink=build_default_heatmap_table(),
        planner=IntervalPlanner(settings.timezone),
        workers=workers or settings.pipeline_workers,
        partition_size=settings.partition_size,
    )


def process_heat_map(
    readings: Iterable[Reading],
    sink: Optional[HeatMapSink] = None,
) -> RunReport:
    """Library entry point: build the heat map for ``readings`` into ``sink``."""
    if sink is None:
        return build_default_pipeline().run(readings)
    settings = get_settings()
    pipeline = HeatMapPipeline(
        sink=sink,
        planner=IntervalPlanner(settings.timezone),
        workers=settings.pipeline_workers,
        partition_size=settings.partition_size,
    )
    return pipeline.run(readings)
