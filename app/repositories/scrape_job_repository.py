"""
Repository for durable scrape job definitions and run history.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.scraping.types import RunResult, ScrapeJobDefinition
from db.models.scrape_job import ScrapeJob, ScrapeRun


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ScrapeJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, job_id: str) -> ScrapeJob | None:
        return self._session.get(ScrapeJob, job_id)

    def save_definition(self, definition: ScrapeJobDefinition) -> ScrapeJob:
        row = self.get(definition.id)
        if row is None:
            row = ScrapeJob(id=definition.id, created_at=definition.created_at)
            self._session.add(row)
        row.name = definition.name
        row.target_url = definition.target_url
        row.schedule = definition.schedule
        row.selectors = {field: list(candidates) for field, candidates in definition.selectors.items()}
        row.container_selector = definition.container_selector
        row.rate_limit_per_second = definition.rate_limit_per_second
        row.active = definition.active
        row.last_run_at = definition.last_run_at
        row.next_due_at = definition.next_due_at
        self._session.flush()
        return row

    def delete(self, job_id: str) -> bool:
        row = self.get(job_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def list_definitions(self) -> list[ScrapeJobDefinition]:
        stmt: Select[tuple[ScrapeJob]] = select(ScrapeJob).order_by(ScrapeJob.created_at)
        return [self.to_definition(row) for row in self._session.scalars(stmt).all()]

    def update_schedule_state(
        self,
        *,
        job_id: str,
        last_run_at: datetime | None,
        next_due_at: datetime | None,
    ) -> ScrapeJob | None:
        row = self.get(job_id)
        if row is None:
            return None
        row.last_run_at = last_run_at
        row.next_due_at = next_due_at
        return row

    def record_run(self, run: RunResult) -> ScrapeRun:
        snapshot = run.to_dict()
        row = ScrapeRun(
            id=snapshot["id"],
            job_id=snapshot["job_id"],
            trigger=snapshot["trigger"],
            status=snapshot["status"],
            started_at=snapshot["started_at"],
            finished_at=snapshot["finished_at"],
            items_found=snapshot["items_found"],
            items_new=snapshot["items_new"],
            items_updated=snapshot["items_updated"],
            items_skipped=snapshot["items_skipped"],
            items_failed=snapshot["items_failed"],
            error_kind=snapshot["error_kind"],
            error_message=snapshot["error_message"],
            errors=snapshot["errors"] or None,
        )
        self._session.add(row)
        self._session.flush()
        return row

    @staticmethod
    def to_definition(row: ScrapeJob) -> ScrapeJobDefinition:
        return ScrapeJobDefinition(
            id=row.id,
            name=row.name,
            target_url=row.target_url,
            schedule=row.schedule,
            selectors={field: list(candidates) for field, candidates in (row.selectors or {}).items()},
            active=row.active,
            container_selector=row.container_selector,
            rate_limit_per_second=row.rate_limit_per_second,
            created_at=_as_utc(row.created_at),
            last_run_at=_as_utc(row.last_run_at),
            next_due_at=_as_utc(row.next_due_at),
        )
