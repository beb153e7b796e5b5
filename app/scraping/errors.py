"""
Error taxonomy for scrape job execution and scheduling.
"""

from __future__ import annotations

from collections.abc import Sequence


class ErrorKind:
    FETCH = "FetchError"
    PARSE = "ParseError"
    STORAGE = "StorageError"
    JOB_ALREADY_RUNNING = "JobAlreadyRunning"
    JOB_NOT_FOUND = "JobNotFound"
    CANCELLED = "Cancelled"
    TIMEOUT = "Timeout"
    VALIDATION = "ValidationError"
    UNAVAILABLE = "SchedulerUnavailable"
    INTERNAL = "InternalError"


class ScrapeError(Exception):
    """
    Base exception carrying a machine-readable error kind.
    """

    kind: str = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FetchError(ScrapeError):
    """
    Raised when a page cannot be fetched after the retry budget is spent.
    """

    kind = ErrorKind.FETCH

    def __init__(
        self,
        message: str,
        *,
        url: str,
        attempts: int,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.status_code = status_code
        self.retryable = retryable


class ParseError(ScrapeError):
    """Raised for a single record that cannot be extracted or normalized."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StorageError(ScrapeError):
    """Raised when a batch upsert fails and was rolled back."""

    kind = ErrorKind.STORAGE


class JobAlreadyRunning(ScrapeError):
    kind = ErrorKind.JOB_ALREADY_RUNNING

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} already has a run in flight.")
        self.job_id = job_id


class JobNotFound(ScrapeError):
    kind = ErrorKind.JOB_NOT_FOUND

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found.")
        self.job_id = job_id


class RunCancelled(ScrapeError):
    kind = ErrorKind.CANCELLED


class RunTimeout(ScrapeError):
    kind = ErrorKind.TIMEOUT


class JobValidationError(ScrapeError, ValueError):
    """
    Raised when a job definition is rejected before it reaches the scheduler.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = tuple(issues)
        super().__init__("Invalid job definition: " + "; ".join(self.issues))


class SchedulerUnavailable(ScrapeError):
    """Raised when a run is requested after the coordinator has shut down."""

    kind = ErrorKind.UNAVAILABLE
