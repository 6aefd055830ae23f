#!/usr/bin/env python3
"""
Exception hierarchy for the attendance client.

Sync failures carry enough context for the caller to decide whether the
problem should be shown to the user (first load) or only logged (a stale
snapshot is still usable).
"""
from typing import Optional


class AttendanceError(Exception):
    """Base class for every error raised by this package."""


class SyncError(AttendanceError):
    """The remote endpoint could not be reached or gave an unusable answer."""


class SyncTimeoutError(SyncError):
    """The remote endpoint did not answer within the request timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request timed out after {timeout:g}s")
        self.timeout = timeout


class HttpError(SyncError):
    """The remote endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: Optional[str] = None) -> None:
        message = f"HTTP error! status: {status_code}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.status_code = status_code


class ParseError(SyncError):
    """The response body was not valid JSON or not shaped like a snapshot."""


class RemoteError(SyncError):
    """The endpoint processed the request but reported a failure."""


class ValidationError(AttendanceError):
    """A user action was rejected before touching any state."""


class JankenSelectionError(AttendanceError):
    """No janken entrant could be picked for a match."""
