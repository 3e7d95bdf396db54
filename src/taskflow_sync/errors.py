"""Error taxonomy for the sync layer.

None of these are fatal. Fetch failures surface as a status flag on the
cached entry, mutation failures go to the caller's error callback, storage
and audio failures are swallowed at their boundary.
"""

from __future__ import annotations


class TaskFlowSyncError(Exception):
    """Base class for all errors raised by taskflow_sync."""


class ApiError(TaskFlowSyncError):
    """A remote operation failed (HTTP status or transport).

    detail is the server-supplied message, when the response carried one.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class FetchError(TaskFlowSyncError):
    """A query fetch failed. Cached data is kept."""

    def __init__(self, key: tuple[object, ...], cause: BaseException) -> None:
        super().__init__(f"fetch failed for {key!r}: {cause}")
        self.key = key
        self.cause = cause


class MutationError(TaskFlowSyncError):
    """A write failed. Carries a message fit for user-facing display."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause


class StorageError(TaskFlowSyncError):
    """A preference backend could not read or write."""


class AudioPlaybackError(TaskFlowSyncError):
    """The alert sound could not be played."""
