from __future__ import annotations

from typing import Optional


class EventSyncError(Exception):
    """Base class for every error raised by the event sync engine."""


class InvalidRangeError(EventSyncError, ValueError):
    def __init__(self, start: object, end: object, message: Optional[str] = None) -> None:
        self.start = start
        self.end = end
        super().__init__(message or f"start {start} is after end {end}")


class RemoteFetchError(EventSyncError):
    """The events endpoint answered with a non-success status."""

    def __init__(self, status_code: int, url: str, reason: Optional[str] = None) -> None:
        self.status_code = status_code
        self.url = url
        self.reason = reason
        detail = f" {reason}" if reason else ""
        super().__init__(f"events endpoint returned {status_code}{detail} for {url}")


class TransportError(EventSyncError):
    """Network-level failure (DNS, connect, reset, timeout)."""

    def __init__(self, url: str, cause: BaseException) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"transport failure for {url}: {cause!r}")


class CancellationSignal(EventSyncError):
    """Internal: a fetch was superseded. Never surfaced to presentation code."""

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(reason or "cancelled")
