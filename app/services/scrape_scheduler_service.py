"""
app/services/scrape_scheduler_service.py

Service orchestration for scheduled property scraping.

Wires the fetcher, executor, ingestion store and coordinator together and
keeps the durable ``scrape_jobs`` / ``scrape_runs`` tables in step with the
in-memory job table.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import SchedulerSettings, get_scheduler_settings
from app.repositories.scrape_job_repository import ScrapeJobRepository
from app.scheduler.coordinator import SchedulerCoordinator
from app.scheduler.cron import CronSchedules
from app.scraping.config import ScrapingSettings, get_scraping_settings, load_job_definitions
from app.scraping.errors import JobValidationError, StorageError
from app.scraping.executor import JobRunExecutor
from app.scraping.fetcher import PageFetcher
from app.scraping.logging_utils import log_event
from app.scraping.storage import SQLAlchemyIngestionStore
from app.scraping.types import RunResult, ScrapeJobDefinition
from db.session import get_session_factory

logger = logging.getLogger(__name__)

SAMPLE_JOB_NOTE = (
    "This is a demo job with example selectors. "
    "Update the selectors and URL for real scraping."
)


def build_sample_job() -> ScrapeJobDefinition:
    return ScrapeJobDefinition(
        name="Sample Property Site",
        target_url="https://example-property-site.com/listings",
        schedule=CronSchedules.DAILY,
        selectors={
            "title": ["h2.property-title"],
            "price": ["span.price"],
            "address": ["div.address"],
            "property_type": ["span.type"],
            "bedrooms": ["span.bedrooms"],
            "bathrooms": ["span.bathrooms"],
            "land_size": ["span.land-size"],
            "floor_size": ["span.floor-size"],
        },
    )


class ScrapeSchedulerService:
    """
    Owns the coordinator for the API process and persists job state.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        scraping_settings: ScrapingSettings,
        scheduler_settings: SchedulerSettings,
        executor: JobRunExecutor | None = None,
        coordinator: SchedulerCoordinator | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._scraping_settings = scraping_settings
        self._scheduler_settings = scheduler_settings
        if coordinator is None:
            executor = executor or JobRunExecutor(
                fetcher=PageFetcher(settings=scraping_settings),
                store=SQLAlchemyIngestionStore(session_factory=session_factory),
            )
            coordinator = SchedulerCoordinator(
                executor=executor,
                settings=scheduler_settings,
                run_listener=self._persist_run,
            )
        self.coordinator = coordinator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def bootstrap(self) -> int:
        """
        Register persisted jobs, then seed jobs from the JSON config file.

        Seeds whose (name, target_url) already exist are not added twice.
        Returns the number of jobs registered.
        """

        with self._session_scope() as session:
            stored = ScrapeJobRepository(session).list_definitions()

        registered = 0
        known = set()
        for definition in stored:
            known.add((definition.name, definition.target_url))
            if self._register_quietly(definition):
                registered += 1

        config_path = self._scraping_settings.jobs_config_path
        if config_path:
            for definition in load_job_definitions(config_path=config_path):
                if (definition.name, definition.target_url) in known:
                    continue
                if self._register_quietly(definition):
                    self._save_definition(self.coordinator.get_job(definition.id))
                    known.add((definition.name, definition.target_url))
                    registered += 1

        log_event(logger, logging.INFO, "scrape_jobs_bootstrapped", registered=registered)
        return registered

    def start(self) -> None:
        if self._scheduler_settings.enabled:
            self.coordinator.start()
        else:
            log_event(logger, logging.INFO, "scheduler_disabled")

    def shutdown(self) -> None:
        self.coordinator.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, definition: ScrapeJobDefinition) -> ScrapeJobDefinition:
        stored = self.coordinator.add_job(definition)
        try:
            self._save_definition(stored)
        except StorageError:
            self.coordinator.delete_job(stored.id)
            raise
        return stored

    def create_sample_job(self) -> ScrapeJobDefinition:
        return self.create_job(build_sample_job())

    def update_job(self, job_id: str, **changes: Any) -> ScrapeJobDefinition:
        stored = self.coordinator.update_job(job_id, **changes)
        self._save_definition(stored)
        return stored

    def delete_job(self, job_id: str) -> None:
        self.coordinator.delete_job(job_id)
        try:
            with self._session_scope() as session:
                with session.begin():
                    ScrapeJobRepository(session).delete(job_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to delete scrape job {job_id}: {exc}") from exc

    def get_job(self, job_id: str) -> ScrapeJobDefinition:
        return self.coordinator.get_job(job_id)

    def list_jobs(self) -> list[ScrapeJobDefinition]:
        return self.coordinator.list_jobs()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_now(self, job_id: str, *, wait: bool = False) -> RunResult:
        return self.coordinator.run_now(job_id, wait=wait)

    def list_runs(self, *, job_id: str | None = None, limit: int | None = None) -> list[RunResult]:
        if job_id is not None:
            self.coordinator.get_job(job_id)
        return self.coordinator.list_runs(job_id, limit=limit)

    def job_stats(self) -> dict[str, int]:
        return self.coordinator.job_stats()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Yield a fresh session and ensure it is closed on exit."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def _register_quietly(self, definition: ScrapeJobDefinition) -> bool:
        try:
            self.coordinator.add_job(definition)
        except (JobValidationError, ValueError) as exc:
            log_event(
                logger,
                logging.WARNING,
                "scrape_job_rejected",
                job_name=definition.name,
                error=str(exc),
            )
            return False
        return True

    def _save_definition(self, definition: ScrapeJobDefinition) -> None:
        try:
            with self._session_scope() as session:
                with session.begin():
                    ScrapeJobRepository(session).save_definition(definition)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to save scrape job {definition.id}: {exc}") from exc

    def _persist_run(self, definition: ScrapeJobDefinition, run: RunResult) -> None:
        try:
            with self._session_scope() as session:
                with session.begin():
                    repository = ScrapeJobRepository(session)
                    if repository.get(definition.id) is None:
                        # Deleted after the run was released; never re-create it.
                        log_event(
                            logger,
                            logging.INFO,
                            "run_persist_skipped",
                            job_id=definition.id,
                            run_id=run.id,
                            reason="job deleted",
                        )
                        return
                    repository.record_run(run)
                    repository.update_schedule_state(
                        job_id=definition.id,
                        last_run_at=definition.last_run_at,
                        next_due_at=definition.next_due_at,
                    )
        except SQLAlchemyError as exc:
            log_event(
                logger,
                logging.ERROR,
                "run_persist_failed",
                job_id=definition.id,
                run_id=run.id,
                error=str(exc),
            )


@lru_cache(maxsize=1)
def get_scrape_scheduler_service() -> ScrapeSchedulerService:
    """
    Build and cache the scrape scheduler service.
    """

    return ScrapeSchedulerService(
        session_factory=get_session_factory(),
        scraping_settings=get_scraping_settings(),
        scheduler_settings=get_scheduler_settings(),
    )
