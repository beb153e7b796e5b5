"""
Shared scraping runtime data models.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

REQUIRED_FIELDS: tuple[str, ...] = ("title", "address", "source_url")
LISTING_FIELDS: tuple[str, ...] = (
    "title",
    "price",
    "address",
    "province",
    "city",
    "suburb",
    "property_type",
    "bedrooms",
    "bathrooms",
    "garage_spaces",
    "land_size",
    "floor_size",
    "source_url",
    "latitude",
    "longitude",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Matched:
    """
    A selector candidate chain produced a non-empty value.
    """

    value: str
    selector: str


class _Absent:
    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()
SelectorMatch = Matched | _Absent


@dataclass(frozen=True)
class ScrapeJobDefinition:
    """
    One recurring scrape target bound to a URL and a cron schedule.
    """

    name: str
    target_url: str
    schedule: str
    selectors: dict[str, list[str]] = field(default_factory=dict)
    active: bool = True
    container_selector: str | None = None
    rate_limit_per_second: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)
    last_run_at: datetime | None = None
    next_due_at: datetime | None = None


@dataclass(frozen=True)
class ExtractedRecord:
    """
    One normalized property listing, held in memory until ingestion.
    """

    title: str
    address: str
    source_url: str
    province: str = "unknown"
    city: str = "unknown"
    property_type: str = "unknown"
    price: int | None = None
    suburb: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    garage_spaces: int | None = None
    land_size: float | None = None
    floor_size: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    scraped_at: datetime = field(default_factory=utc_now)

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UpsertCounts:
    new: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def ingested(self) -> int:
        return self.new + self.updated


class RunStatus:
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"

    TERMINAL = frozenset({SUCCEEDED, FAILED, PARTIALLY_FAILED})


class RunTrigger:
    SCHEDULED = "scheduled"
    MANUAL = "manual"


_MAX_RECORDED_ERRORS = 50


@dataclass
class RunResult:
    """
    Outcome of one job execution.

    Counters may change while the run is in flight; once a terminal status
    is written the result is frozen.
    """

    job_id: str
    trigger: str = RunTrigger.SCHEDULED
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = RunStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    items_found: int = 0
    items_new: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    error_kind: str | None = None
    error_message: str | None = None
    errors: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in RunStatus.TERMINAL

    def mark_running(self) -> None:
        with self._lock:
            self._ensure_open()
            self.status = RunStatus.RUNNING
            self.started_at = utc_now()

    def record_found(self, count: int) -> None:
        with self._lock:
            self._ensure_open()
            self.items_found = count

    def record_failure(self, message: str) -> None:
        with self._lock:
            self._ensure_open()
            self.items_failed += 1
            if len(self.errors) < _MAX_RECORDED_ERRORS:
                self.errors.append(message)

    def record_counts(self, counts: UpsertCounts) -> None:
        with self._lock:
            self._ensure_open()
            self.items_new = counts.new
            self.items_updated = counts.updated
            self.items_skipped = counts.skipped

    def finish(
        self,
        status: str,
        *,
        error_kind: str | None = None,
        error_message: str | None = None,
    ) -> None:
        if status not in RunStatus.TERMINAL:
            raise ValueError(f"'{status}' is not a terminal run status.")
        with self._lock:
            self._ensure_open()
            self.status = status
            self.error_kind = error_kind
            self.error_message = error_message
            if self.started_at is None:
                self.started_at = utc_now()
            self.finished_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "job_id": self.job_id,
                "trigger": self.trigger,
                "status": self.status,
                "created_at": self.created_at,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "items_found": self.items_found,
                "items_new": self.items_new,
                "items_updated": self.items_updated,
                "items_skipped": self.items_skipped,
                "items_failed": self.items_failed,
                "error_kind": self.error_kind,
                "error_message": self.error_message,
                "errors": list(self.errors),
            }

    def _ensure_open(self) -> None:
        if self.status in RunStatus.TERMINAL:
            raise RuntimeError(f"Run {self.id} already finished with status '{self.status}'.")
