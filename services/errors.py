"""Exceptions raised by the heat map pipeline."""

from __future__ import annotations

from typing import Sequence

from models.records import Window


class HeatMapError(Exception):
    """Base class for pipeline failures surfaced to callers."""


class EmptyInputError(HeatMapError, ValueError):
    """Raised when a batch holds no readings to derive the time range from."""

    def __init__(self, message: str = "Cannot build a heat map from an empty batch.") -> None:
        super().__init__(message)


class SinkWriteError(HeatMapError):
    """The sink rejected one window's records.

    The window is independent of the others, so callers can retry it alone
    from the same batch. ``committed`` lists the windows written before it.
    """

    def __init__(self, window: Window, committed: Sequence[Window], reason: str) -> None:
        self.window = window
        self.committed = tuple(committed)
        self.reason = reason
        super().__init__(f"Failed to write heat map window {window.describe()}: {reason}")


class PipelineCancelledError(HeatMapError):
    """Raised when a run was cancelled between windows."""

    def __init__(self, committed: Sequence[Window], remaining: int) -> None:
        self.committed = tuple(committed)
        self.remaining = remaining
        super().__init__(
            f"Heat map run cancelled after {len(self.committed)} window(s); "
            f"{remaining} window(s) not processed."
        )


class RunInProgressError(HeatMapError):
    """Raised when an action needs a finished run but the run is still active."""
