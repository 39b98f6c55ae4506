"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    UploadFile,
    status,
)

from app.schemas import HeatMapEntry, RunResult, RunUploadResponse
from datastore.heatmap_table import HeatMapTable, build_default_heatmap_table
from services.errors import RunInProgressError
from services.runner import RunService, build_default_runner

router = APIRouter()


def get_runner() -> RunService:
    return build_default_runner()


def get_heatmap_table() -> HeatMapTable:
    return build_default_heatmap_table()


@router.post(
    "/runs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RunUploadResponse,
    summary="Upload a CSV batch of readings and build its heat map.",
)
async def upload_batch(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="CSV with latitude, longitude and timestamp columns."),
    runner: RunService = Depends(get_runner),
) -> RunUploadResponse:
    try:
        run_id = runner.enqueue_file(background_tasks, file)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return RunUploadResponse(run_id=run_id)


@router.get(
    "/runs/{run_id}",
    response_model=RunResult,
    summary="Fetch the status and outcome of a heat map run.",
)
async def get_run(
    run_id: str,
    runner: RunService = Depends(get_runner),
) -> RunResult:
    try:
        return runner.fetch_result(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post(
    "/runs/{run_id}/cancel",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Stop an active run after its current window.",
)
async def cancel_run(
    run_id: str,
    runner: RunService = Depends(get_runner),
) -> Dict[str, Any]:
    try:
        requested = runner.cancel(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"run_id": run_id, "cancel_requested": requested}


@router.post(
    "/runs/{run_id}/retry",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RunUploadResponse,
    summary="Rebuild every window of a finished run from its stored batch.",
)
async def retry_run(
    run_id: str,
    runner: RunService = Depends(get_runner),
) -> RunUploadResponse:
    try:
        runner.retry(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RunInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RunUploadResponse(run_id=run_id)


@router.get(
    "/heatmap",
    response_model=List[HeatMapEntry],
    summary="List stored heat map rows, optionally for a single day.",
)
async def list_heatmap(
    day: Optional[date] = Query(None, description="Window start day (YYYY-MM-DD)."),
    table: HeatMapTable = Depends(get_heatmap_table),
) -> List[HeatMapEntry]:
    return table.query(day=day)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
