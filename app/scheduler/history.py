"""
app/scheduler/history.py

Bounded in-memory history of finished runs, kept per job.
"""

from __future__ import annotations

import threading
from collections import Counter, deque

from app.scraping.types import RunResult, RunStatus


class RunHistory:
    def __init__(self, *, keep_per_job: int = 50) -> None:
        if keep_per_job < 1:
            raise ValueError("keep_per_job must be at least 1.")
        self._keep_per_job = keep_per_job
        self._lock = threading.Lock()
        self._runs: dict[str, deque[RunResult]] = {}
        self._status_totals: Counter[str] = Counter()

    def record(self, run: RunResult) -> None:
        if not run.is_terminal:
            raise ValueError(f"Run {run.id} is not finished and cannot be recorded.")
        with self._lock:
            runs = self._runs.setdefault(run.job_id, deque(maxlen=self._keep_per_job))
            runs.append(run)
            self._status_totals[run.status] += 1

    def list(self, *, job_id: str | None = None, limit: int | None = None) -> list[RunResult]:
        """
        Return finished runs, newest first.
        """

        with self._lock:
            if job_id is not None:
                runs = list(self._runs.get(job_id, ()))
            else:
                runs = [run for job_runs in self._runs.values() for run in job_runs]
        runs.sort(key=lambda run: run.finished_at or run.created_at, reverse=True)
        return runs if limit is None else runs[: max(0, limit)]

    def forget(self, job_id: str) -> None:
        with self._lock:
            self._runs.pop(job_id, None)

    def prune(self, *, keep_per_job: int) -> int:
        """
        Drop all but the newest `keep_per_job` runs of every job.

        Returns how many runs were removed.
        """

        if keep_per_job < 0:
            raise ValueError("keep_per_job must not be negative.")
        removed = 0
        with self._lock:
            for job_id, runs in list(self._runs.items()):
                while len(runs) > keep_per_job:
                    runs.popleft()
                    removed += 1
                if not runs:
                    del self._runs[job_id]
        return removed

    def totals(self) -> dict[str, int]:
        """
        Lifetime counts by terminal status; pruning does not reduce them.
        """

        with self._lock:
            return {
                "total_runs": sum(self._status_totals.values()),
                "successful_runs": self._status_totals[RunStatus.SUCCEEDED],
                "failed_runs": self._status_totals[RunStatus.FAILED],
                "partially_failed_runs": self._status_totals[RunStatus.PARTIALLY_FAILED],
            }
