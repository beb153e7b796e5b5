"""
app/schemas/scrape_jobs.py

Request and response schemas for scrape job management.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.scraping.config import normalize_selectors


def _coerce_selectors(value: object) -> object:
    if value is None:
        return value
    if not isinstance(value, dict):
        raise ValueError("selectors must be an object mapping field names to CSS selectors")
    return normalize_selectors(value)


class ScrapeJobCreateRequest(BaseModel):
    """
    Payload for registering a new scrape job.

    Each selector value may be a single CSS selector or an ordered list of
    fallback candidates; ``css@attr`` reads an attribute instead of text.
    """

    name: str = Field(..., min_length=1, max_length=200)
    target_url: str = Field(..., min_length=1)
    schedule: str = Field(..., min_length=1, examples=["0 0 2 * * *"])
    selectors: dict[str, list[str]] = Field(default_factory=dict)
    active: bool = True
    container_selector: str | None = None
    rate_limit_per_second: float | None = Field(default=None, gt=0)

    @field_validator("selectors", mode="before")
    @classmethod
    def _normalize_selectors(cls, value: object) -> object:
        return _coerce_selectors(value) or {}


class ScrapeJobUpdateRequest(BaseModel):
    """
    Partial update; omitted fields keep their current value.
    """

    name: str | None = Field(default=None, min_length=1, max_length=200)
    target_url: str | None = None
    schedule: str | None = None
    selectors: dict[str, list[str]] | None = None
    active: bool | None = None
    container_selector: str | None = None
    rate_limit_per_second: float | None = Field(default=None, gt=0)

    @field_validator("selectors", mode="before")
    @classmethod
    def _normalize_selectors(cls, value: object) -> object:
        return _coerce_selectors(value)


class ScrapeJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    target_url: str
    schedule: str
    selectors: dict[str, list[str]]
    active: bool
    container_selector: str | None = None
    rate_limit_per_second: float | None = None
    created_at: datetime
    last_run_at: datetime | None = None
    next_due_at: datetime | None = None


class ScrapeJobCreatedResponse(BaseModel):
    job_id: str
    message: str
    note: str | None = None
    job: ScrapeJobResponse


class RunResultResponse(BaseModel):
    """
    API response model for one job run.
    """

    id: str
    job_id: str
    trigger: str
    status: str
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    items_found: int = Field(..., ge=0)
    items_new: int = Field(..., ge=0)
    items_updated: int = Field(..., ge=0)
    items_skipped: int = Field(..., ge=0)
    items_failed: int = Field(..., ge=0)
    error_kind: str | None = None
    error_message: str | None = None
    errors: list[str] = Field(default_factory=list)


class SchedulerStatsResponse(BaseModel):
    total_jobs: int = Field(..., ge=0)
    active_jobs: int = Field(..., ge=0)
    running_jobs: int = Field(..., ge=0)
    total_runs: int = Field(..., ge=0)
    successful_runs: int = Field(..., ge=0)
    failed_runs: int = Field(..., ge=0)
    partially_failed_runs: int = Field(..., ge=0)
