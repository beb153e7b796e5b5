"""
app/scheduler/registry.py

In-memory job table and in-flight run bookkeeping for the coordinator.

Every public method takes the registry lock for the whole of its check and
mutation, so "is this job running?" and "mark it running" can never be split
by another thread. The lock is never held across I/O.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from datetime import datetime

from app.scheduler.cron import CronSchedule
from app.scraping.control import RunControl
from app.scraping.errors import JobAlreadyRunning, JobNotFound
from app.scraping.types import RunResult, ScrapeJobDefinition


@dataclass
class InFlightRun:
    run: RunResult
    control: RunControl
    future: Future | None = field(default=None, repr=False)
    # Due time this run was dispatched for; None for manual runs.
    serving_due: datetime | None = None


@dataclass(frozen=True)
class MissedRun:
    job: ScrapeJobDefinition
    due_at: datetime


@dataclass(frozen=True)
class DueSnapshot:
    """
    Jobs found due by one tick, plus occurrences missed because the job was
    still running.
    """

    ready: list[ScrapeJobDefinition]
    skipped: list[MissedRun]


class JobRegistry:
    def __init__(self, *, timezone: str = "UTC") -> None:
        self._timezone = timezone
        self._lock = threading.Lock()
        self._jobs: dict[str, ScrapeJobDefinition] = {}
        self._schedules: dict[str, CronSchedule] = {}
        self._in_flight: dict[str, InFlightRun] = {}
        self._pending_removal: set[str] = set()
        self._skip_logged_for: dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Job table
    # ------------------------------------------------------------------

    def schedule_for(self, expression: str) -> CronSchedule:
        return CronSchedule.parse(expression, timezone=self._timezone)

    def add(self, definition: ScrapeJobDefinition, *, now: datetime) -> ScrapeJobDefinition:
        schedule = self.schedule_for(definition.schedule)
        next_due = definition.next_due_at
        if next_due is None or next_due <= now:
            next_due = schedule.next_after(now)
        stored = replace(definition, next_due_at=next_due)

        with self._lock:
            if definition.id in self._jobs and definition.id not in self._pending_removal:
                raise ValueError(f"Scrape job '{definition.id}' is already registered.")
            self._jobs[definition.id] = stored
            self._schedules[definition.id] = schedule
            self._pending_removal.discard(definition.id)
        return stored

    def update(
        self,
        job_id: str,
        definition: ScrapeJobDefinition,
        *,
        now: datetime,
    ) -> tuple[ScrapeJobDefinition, RunControl | None]:
        """
        Swap in an updated definition.

        Returns the stored definition and, when the job was deactivated while
        running, the control of the run that should be cancelled.
        """

        schedule = self.schedule_for(definition.schedule)
        with self._lock:
            current = self._visible(job_id)
            reschedule = (
                definition.schedule != current.schedule
                or (definition.active and not current.active)
            )
            next_due = schedule.next_after(now) if reschedule else current.next_due_at
            stored = replace(
                definition,
                id=job_id,
                created_at=current.created_at,
                last_run_at=current.last_run_at,
                next_due_at=next_due,
            )
            self._jobs[job_id] = stored
            self._schedules[job_id] = schedule

            to_cancel = None
            if current.active and not stored.active and job_id in self._in_flight:
                to_cancel = self._in_flight[job_id].control
        return stored, to_cancel

    def request_removal(self, job_id: str) -> RunControl | None:
        """
        Remove a job now, or mark it for removal once its current run ends.
        """

        with self._lock:
            self._visible(job_id)
            in_flight = self._in_flight.get(job_id)
            if in_flight is None:
                self._drop(job_id)
                return None
            self._pending_removal.add(job_id)
            return in_flight.control

    def get(self, job_id: str) -> ScrapeJobDefinition | None:
        with self._lock:
            if job_id in self._pending_removal:
                return None
            return self._jobs.get(job_id)

    def jobs(self) -> list[ScrapeJobDefinition]:
        with self._lock:
            jobs = [
                job for job_id, job in self._jobs.items() if job_id not in self._pending_removal
            ]
        return sorted(jobs, key=lambda job: job.created_at)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def collect_due(self, now: datetime) -> DueSnapshot:
        """
        Split due jobs into idle ones to dispatch and missed occurrences.

        Each missed occurrence is reported by exactly one call.
        """

        ready: list[ScrapeJobDefinition] = []
        skipped: list[MissedRun] = []
        with self._lock:
            for job_id, job in self._jobs.items():
                if job_id in self._pending_removal or not job.active:
                    continue
                in_flight = self._in_flight.get(job_id)
                if in_flight is None:
                    if job.next_due_at is not None and job.next_due_at <= now:
                        ready.append(job)
                    continue
                skipped.extend(
                    MissedRun(job=job, due_at=due_at)
                    for due_at in self._missed_since_last_report(job_id, job, in_flight, now)
                )
        return DueSnapshot(ready=ready, skipped=skipped)

    def claim(
        self,
        job_id: str,
        *,
        trigger: str,
        timeout_seconds: float | None,
        serving_due: datetime | None = None,
    ) -> tuple[ScrapeJobDefinition, InFlightRun]:
        with self._lock:
            job = self._visible(job_id)
            if job_id in self._in_flight:
                raise JobAlreadyRunning(job_id)
            in_flight = InFlightRun(
                run=RunResult(job_id=job_id, trigger=trigger),
                control=RunControl(timeout_seconds=timeout_seconds),
                serving_due=serving_due,
            )
            self._in_flight[job_id] = in_flight
        return job, in_flight

    def abandon(self, job_id: str, run_id: str) -> None:
        """
        Undo a claim whose run never reached a worker.
        """

        with self._lock:
            in_flight = self._in_flight.get(job_id)
            if in_flight is not None and in_flight.run.id == run_id:
                del self._in_flight[job_id]
            if job_id in self._pending_removal:
                self._drop(job_id)

    def release(
        self,
        job_id: str,
        run_id: str,
        *,
        finished_at: datetime,
    ) -> ScrapeJobDefinition | None:
        """
        Clear the in-flight mark and compute the next due time.

        Returns the updated definition, or None when the job was deleted while
        the run was executing; that run's result should be discarded.
        """

        with self._lock:
            in_flight = self._in_flight.get(job_id)
            if in_flight is not None and in_flight.run.id == run_id:
                del self._in_flight[job_id]
            self._skip_logged_for.pop(job_id, None)

            if job_id in self._pending_removal or job_id not in self._jobs:
                self._drop(job_id)
                return None

            job = self._jobs[job_id]
            updated = replace(
                job,
                last_run_at=finished_at,
                next_due_at=self._schedules[job_id].next_after(finished_at),
            )
            self._jobs[job_id] = updated
            return updated

    def in_flight(self) -> list[InFlightRun]:
        with self._lock:
            return list(self._in_flight.values())

    # ------------------------------------------------------------------
    # Internal helpers (lock held)
    # ------------------------------------------------------------------

    def _visible(self, job_id: str) -> ScrapeJobDefinition:
        job = self._jobs.get(job_id)
        if job is None or job_id in self._pending_removal:
            raise JobNotFound(job_id)
        return job

    def _missed_since_last_report(
        self,
        job_id: str,
        job: ScrapeJobDefinition,
        in_flight: InFlightRun,
        now: datetime,
    ) -> list[datetime]:
        schedule = self._schedules[job_id]
        last_reported = self._skip_logged_for.get(job_id)
        if last_reported is not None:
            candidate = schedule.next_after(last_reported)
        elif in_flight.serving_due is not None:
            candidate = schedule.next_after(in_flight.serving_due)
        else:
            candidate = job.next_due_at

        missed: list[datetime] = []
        while candidate is not None and candidate <= now:
            missed.append(candidate)
            candidate = schedule.next_after(candidate)
        if missed:
            self._skip_logged_for[job_id] = missed[-1]
        return missed

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._schedules.pop(job_id, None)
        self._pending_removal.discard(job_id)
        self._skip_logged_for.pop(job_id, None)
