"""Error taxonomy for the continuity engine."""

from __future__ import annotations

from typing import Any


class ContinuityError(Exception):
    """Base class for continuity engine failures."""


class ValidationError(ContinuityError):
    """
    An explicit request referenced something that does not exist or is not allowed.

    Raised for unknown session/checkpoint ids, unknown hook events and
    mutations of ended sessions.
    """


class StorageError(ContinuityError, OSError):
    """Disk read/write or decode failure in the persistence layer."""

    path: str | None = None

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class TimeoutExpired(ContinuityError):
    """A session was idle past its retention window."""

    session_id: str | None = None
    idle_seconds: float | None = None

    def __init__(self, session_id: str, idle_seconds: float):
        super().__init__(
            f"Session {session_id} expired after {idle_seconds:.0f}s of inactivity"
        )
        self.session_id = session_id
        self.idle_seconds = idle_seconds


class PartialHookFailure(ContinuityError):
    """One or more handlers failed during a trigger; the rest still ran."""

    def __init__(self, event: str, results: list[Any], failures: int):
        super().__init__(f"{failures} handler(s) failed for {event}")
        self.event = event
        self.results = results
        self.failures = failures


__all__ = [
    "ContinuityError",
    "ValidationError",
    "StorageError",
    "TimeoutExpired",
    "PartialHookFailure",
]
