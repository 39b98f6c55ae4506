"""Pydantic schemas for the HTTP API layer and the stores."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import HeatMapRecord


class RunStatus(str, Enum):
    """Run lifecycle states exposed via the API."""

    uploaded = "uploaded"
    processing = "processing"
    processed = "processed"
    partial = "partial"
    failed = "failed"
    cancelled = "cancelled"


class RunUploadResponse(BaseModel):
    """Immediate response payload after accepting a batch upload."""

    run_id: str = Field(..., description="Generated identifier for the heat map run.")


class HeatMapEntry(BaseModel):
    """Stored heat map row: one grid cell on one day."""

    model_config = ConfigDict(populate_by_name=True)

    latitude: float
    longitude: float
    total_count: int = Field(..., ge=1, alias="totalcount")
    timestamp: datetime

    @classmethod
    def from_record(cls, record: HeatMapRecord) -> "HeatMapEntry":
        return cls(
            latitude=record.latitude,
            longitude=record.longitude,
            total_count=record.total_count,
            timestamp=record.timestamp,
        )

    @property
    def key(self) -> str:
        return f"{self.latitude!r}|{self.longitude!r}|{self.timestamp.astimezone(timezone.utc).isoformat()}"


class ProcessingError(BaseModel):
    """Details about a CSV row that was skipped."""

    row_number: int = Field(..., ge=1)
    reason: str


class WindowFailure(BaseModel):
    """The window a run stopped at, so it can be retried on its own."""

    index: int = Field(..., ge=0)
    start: datetime
    end: datetime
    reason: str


class RunResult(BaseModel):
    """Full record representing one heat map run."""

    run_id: str
    status: RunStatus
    uploaded_at: datetime
    batch_key: Optional[str] = None
    processed_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    reading_count: int = Field(default=0, ge=0)
    window_count: int = Field(default=0, ge=0)
    record_count: int = Field(default=0, ge=0)
    failed_window: Optional[WindowFailure] = None
    errors: List[ProcessingError] = Field(default_factory=list)
