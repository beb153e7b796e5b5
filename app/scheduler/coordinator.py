"""
app/scheduler/coordinator.py

Owns the job table, decides when jobs are due and hands runs to a bounded
worker pool.

Threads involved
----------------
  tick thread:    APScheduler interval job (or a test) calling ``tick``
  API threads:    ``run_now`` / CRUD calls from request handlers
  worker threads: ``ThreadPoolExecutor`` running ``JobRunExecutor.execute``

All three meet only in ``JobRegistry``, whose lock covers "is the job
running?" and "mark it running" in one step.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import SchedulerSettings
from app.scheduler.history import RunHistory
from app.scheduler.jobs import build_scheduler
from app.scheduler.registry import InFlightRun, JobRegistry
from app.scraping.errors import ErrorKind, JobAlreadyRunning, JobNotFound, SchedulerUnavailable
from app.scraping.executor import JobRunExecutor
from app.scraping.logging_utils import log_event, log_run_event
from app.scraping.types import (
    RunResult,
    RunStatus,
    RunTrigger,
    ScrapeJobDefinition,
    utc_now,
)
from app.validators.job_validator import JobDefinitionValidator

logger = logging.getLogger(__name__)

RunListener = Callable[[ScrapeJobDefinition, RunResult], None]

_UPDATABLE_FIELDS = frozenset(
    {"name", "target_url", "schedule", "selectors", "active", "container_selector", "rate_limit_per_second"}
)


class SchedulerCoordinator:
    def __init__(
        self,
        *,
        executor: JobRunExecutor,
        settings: SchedulerSettings,
        registry: JobRegistry | None = None,
        history: RunHistory | None = None,
        validator: JobDefinitionValidator | None = None,
        run_listener: RunListener | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._executor = executor
        self._settings = settings
        self._registry = registry or JobRegistry(timezone=settings.timezone)
        self._history = history or RunHistory(keep_per_job=settings.history_per_job)
        self._validator = validator or JobDefinitionValidator(timezone=settings.timezone)
        self._run_listener = run_listener
        self._clock = clock
        self._pool = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="scrape-worker",
        )
        self._scheduler: BackgroundScheduler | None = None
        self._lifecycle_lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._closed:
                raise RuntimeError("Scheduler coordinator has been shut down.")
            if self._scheduler is not None:
                return
            self._scheduler = build_scheduler(self.tick, settings=self._settings)
            self._scheduler.start()
        log_event(
            logger,
            logging.INFO,
            "scheduler_started",
            tick_seconds=self._settings.tick_seconds,
            max_workers=self._settings.max_workers,
            jobs=len(self._registry.jobs()),
        )

    def shutdown(self, *, wait: bool = True) -> None:
        """
        Stop ticking, cancel in-flight runs and drain the worker pool.

        Runs already queued still start, observe the cancellation at their
        first checkpoint and finish as failed/Cancelled.
        """

        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
            scheduler, self._scheduler = self._scheduler, None

        if scheduler is not None:
            scheduler.shutdown(wait=False)
        for in_flight in self._registry.in_flight():
            in_flight.control.cancel("scheduler shutting down")
        self._pool.shutdown(wait=wait)
        log_event(logger, logging.INFO, "scheduler_stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    # ------------------------------------------------------------------
    # Job table
    # ------------------------------------------------------------------

    def add_job(self, definition: ScrapeJobDefinition) -> ScrapeJobDefinition:
        self._validator.validate(definition)
        stored = self._registry.add(definition, now=self._clock())
        log_run_event(
            logger,
            logging.INFO,
            "job_registered",
            job_id=stored.id,
            job_name=stored.name,
            schedule=stored.schedule,
            next_due_at=stored.next_due_at,
        )
        return stored

    def update_job(self, job_id: str, **changes: Any) -> ScrapeJobDefinition:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported job fields: {', '.join(sorted(unknown))}")

        current = self._registry.get(job_id)
        if current is None:
            raise JobNotFound(job_id)
        candidate = replace(current, **changes)
        self._validator.validate(candidate)

        stored, to_cancel = self._registry.update(job_id, candidate, now=self._clock())
        if to_cancel is not None:
            to_cancel.cancel("job deactivated")
        log_run_event(
            logger,
            logging.INFO,
            "job_updated",
            job_id=job_id,
            fields=sorted(changes),
            active=stored.active,
            next_due_at=stored.next_due_at,
        )
        return stored

    def delete_job(self, job_id: str) -> None:
        to_cancel = self._registry.request_removal(job_id)
        if to_cancel is None:
            self._history.forget(job_id)
            log_run_event(logger, logging.INFO, "job_deleted", job_id=job_id)
            return
        to_cancel.cancel("job deleted")
        log_run_event(logger, logging.INFO, "job_delete_pending", job_id=job_id)

    def get_job(self, job_id: str) -> ScrapeJobDefinition:
        job = self._registry.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(self) -> list[ScrapeJobDefinition]:
        return self._registry.jobs()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> list[RunResult]:
        """
        Dispatch every due, idle, active job and return the dispatched runs.

        Jobs still running when they come due again are skipped, never queued.
        """

        now = now or self._clock()
        snapshot = self._registry.collect_due(now)

        for missed in snapshot.skipped:
            log_run_event(
                logger,
                logging.WARNING,
                "scheduled_run_skipped",
                job_id=missed.job.id,
                reason="previous run still in flight",
                due_at=missed.due_at,
            )

        dispatched: list[RunResult] = []
        for job in snapshot.ready:
            try:
                in_flight = self._dispatch(
                    job.id,
                    trigger=RunTrigger.SCHEDULED,
                    serving_due=job.next_due_at,
                )
            except (JobAlreadyRunning, JobNotFound):
                # Claimed by a manual run or deleted since collect_due.
                continue
            dispatched.append(in_flight.run)
        return dispatched

    def run_now(self, job_id: str, *, wait: bool = False, timeout: float | None = None) -> RunResult:
        """
        Start a run immediately, ignoring the due time.

        With ``wait=True`` the call blocks until the run is terminal.
        """

        in_flight = self._dispatch(job_id, trigger=RunTrigger.MANUAL)
        if wait and in_flight.future is not None:
            in_flight.future.result(timeout=timeout)
        return in_flight.run

    def _dispatch(
        self,
        job_id: str,
        *,
        trigger: str,
        serving_due: datetime | None = None,
    ) -> InFlightRun:
        if self._closed:
            raise SchedulerUnavailable("Scheduler coordinator has been shut down.")

        job, in_flight = self._registry.claim(
            job_id,
            trigger=trigger,
            timeout_seconds=self._settings.run_timeout_seconds,
            serving_due=serving_due,
        )
        try:
            future = self._pool.submit(self._run, job, in_flight)
        except RuntimeError as exc:
            # Pool closed between the check above and submit.
            self._registry.abandon(job_id, in_flight.run.id)
            raise SchedulerUnavailable("Scheduler coordinator has been shut down.") from exc
        in_flight.future = future
        log_run_event(
            logger,
            logging.INFO,
            "job_run_dispatched",
            job_id=job_id,
            run_id=in_flight.run.id,
            trigger=trigger,
        )
        return in_flight

    def _run(self, job: ScrapeJobDefinition, in_flight: InFlightRun) -> RunResult:
        run = in_flight.run
        try:
            self._executor.execute(job, run=run, control=in_flight.control)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scrape job %s crashed outside the executor", job.id)
            if not run.is_terminal:
                run.finish(RunStatus.FAILED, error_kind=ErrorKind.INTERNAL, error_message=str(exc))
        finally:
            if not run.is_terminal:
                run.finish(
                    RunStatus.FAILED,
                    error_kind=ErrorKind.INTERNAL,
                    error_message="Run ended without a terminal status.",
                )
            self._finish(run)
        return run

    def _finish(self, run: RunResult) -> None:
        updated = self._registry.release(run.job_id, run.id, finished_at=self._clock())
        if updated is None:
            self._history.forget(run.job_id)
            log_run_event(
                logger,
                logging.INFO,
                "job_run_discarded",
                job_id=run.job_id,
                run_id=run.id,
                reason="job deleted during run",
            )
            return

        self._history.record(run)
        log_run_event(
            logger,
            logging.DEBUG,
            "job_rescheduled",
            job_id=run.job_id,
            run_id=run.id,
            next_due_at=updated.next_due_at,
        )
        if self._run_listener is None:
            return
        try:
            self._run_listener(updated, run)
        except Exception:  # noqa: BLE001
            logger.exception("Run listener failed for scrape job %s", run.job_id)

    # ------------------------------------------------------------------
    # History and stats
    # ------------------------------------------------------------------

    def list_runs(self, job_id: str | None = None, *, limit: int | None = None) -> list[RunResult]:
        """
        Finished runs plus any in-flight ones, newest first.
        """

        in_flight = [
            entry.run
            for entry in self._registry.in_flight()
            if job_id is None or entry.run.job_id == job_id
        ]
        runs = in_flight + self._history.list(job_id=job_id)
        runs.sort(key=lambda run: run.started_at or run.created_at, reverse=True)
        return runs if limit is None else runs[: max(0, limit)]

    def prune_history(self, *, keep_per_job: int) -> int:
        removed = self._history.prune(keep_per_job=keep_per_job)
        log_event(logger, logging.INFO, "run_history_pruned", removed=removed, keep_per_job=keep_per_job)
        return removed

    def job_stats(self) -> dict[str, int]:
        jobs = self._registry.jobs()
        return {
            "total_jobs": len(jobs),
            "active_jobs": sum(1 for job in jobs if job.active),
            "running_jobs": len(self._registry.in_flight()),
            **self._history.totals(),
        }
