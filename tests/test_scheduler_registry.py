"""
tests/test_scheduler_registry.py

JobRegistry bookkeeping and RunHistory retention, without worker threads.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.scheduler.history import RunHistory
from app.scheduler.registry import JobRegistry
from app.scraping.errors import JobAlreadyRunning, JobNotFound
from app.scraping.types import RunResult, RunStatus, RunTrigger
from conftest import make_job

NOW = datetime(2026, 10, 18, 1, 0, tzinfo=timezone.utc)
DUE = datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)


@pytest.fixture()
def registry() -> JobRegistry:
    return JobRegistry()


def _finished(job_id: str, status: str = RunStatus.SUCCEEDED) -> RunResult:
    run = RunResult(job_id=job_id, trigger=RunTrigger.MANUAL)
    run.mark_running()
    run.finish(status)
    return run


# ---------------------------------------------------------------------------
# JobRegistry
# ---------------------------------------------------------------------------


def test_duplicate_id_is_rejected(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)

    with pytest.raises(ValueError):
        registry.add(job, now=NOW)


def test_claim_is_exclusive_until_release(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)

    _, in_flight = registry.claim(job.id, trigger=RunTrigger.MANUAL, timeout_seconds=None)
    with pytest.raises(JobAlreadyRunning):
        registry.claim(job.id, trigger=RunTrigger.SCHEDULED, timeout_seconds=None)

    finished_at = DUE + timedelta(minutes=3)
    updated = registry.release(job.id, in_flight.run.id, finished_at=finished_at)

    assert updated is not None
    assert updated.last_run_at == finished_at
    assert updated.next_due_at == DUE + timedelta(days=1)
    assert registry.in_flight() == []


def test_collect_due_reports_each_missed_due_time_once(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)
    registry.claim(job.id, trigger=RunTrigger.MANUAL, timeout_seconds=None)

    first = registry.collect_due(DUE)
    second = registry.collect_due(DUE + timedelta(minutes=1))

    assert first.ready == []
    assert [(missed.job.id, missed.due_at) for missed in first.skipped] == [(job.id, DUE)]
    assert second.ready == [] and second.skipped == []


def test_scheduled_run_covers_its_own_due_time(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)
    assert [j.id for j in registry.collect_due(DUE).ready] == [job.id]
    registry.claim(job.id, trigger=RunTrigger.SCHEDULED, timeout_seconds=None, serving_due=DUE)

    during = registry.collect_due(DUE + timedelta(seconds=30))
    next_day = registry.collect_due(DUE + timedelta(days=1, seconds=1))
    again = registry.collect_due(DUE + timedelta(days=1, seconds=31))

    assert during.skipped == []
    assert [missed.due_at for missed in next_day.skipped] == [DUE + timedelta(days=1)]
    assert again.skipped == []


def test_every_missed_occurrence_is_reported(registry: JobRegistry) -> None:
    job = registry.add(make_job(schedule="0 */10 * * * *"), now=NOW)
    first_due = NOW + timedelta(minutes=10)
    registry.claim(job.id, trigger=RunTrigger.SCHEDULED, timeout_seconds=None, serving_due=first_due)

    snapshot = registry.collect_due(first_due + timedelta(minutes=25))

    assert [missed.due_at for missed in snapshot.skipped] == [
        first_due + timedelta(minutes=10),
        first_due + timedelta(minutes=20),
    ]


def test_removal_waits_for_in_flight_run(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)
    _, in_flight = registry.claim(job.id, trigger=RunTrigger.MANUAL, timeout_seconds=None)

    control = registry.request_removal(job.id)

    assert control is in_flight.control
    assert registry.get(job.id) is None
    assert registry.jobs() == []
    with pytest.raises(JobNotFound):
        registry.claim(job.id, trigger=RunTrigger.MANUAL, timeout_seconds=None)
    assert registry.release(job.id, in_flight.run.id, finished_at=DUE) is None
    assert registry.collect_due(DUE).ready == []


def test_abandon_undoes_claim(registry: JobRegistry) -> None:
    job = registry.add(make_job(), now=NOW)
    _, in_flight = registry.claim(job.id, trigger=RunTrigger.MANUAL, timeout_seconds=None)

    registry.abandon(job.id, in_flight.run.id)

    assert registry.in_flight() == []
    assert [j.id for j in registry.collect_due(DUE).ready] == [job.id]


def test_reactivation_reschedules_from_now(registry: JobRegistry) -> None:
    job = registry.add(make_job(active=False), now=NOW)
    later = NOW + timedelta(days=2, hours=3)

    stored, to_cancel = registry.update(job.id, make_job(id=job.id, active=True), now=later)

    assert to_cancel is None
    assert stored.next_due_at == DUE + timedelta(days=3)
    assert stored.created_at == job.created_at


# ---------------------------------------------------------------------------
# RunHistory
# ---------------------------------------------------------------------------


def test_history_rejects_unfinished_runs() -> None:
    with pytest.raises(ValueError):
        RunHistory().record(RunResult(job_id="a"))


def test_history_is_bounded_per_job() -> None:
    history = RunHistory(keep_per_job=2)
    runs = [_finished("a") for _ in range(3)]
    for run in runs:
        history.record(run)
    history.record(_finished("b", RunStatus.FAILED))

    assert {run.id for run in history.list(job_id="a")} == {runs[1].id, runs[2].id}
    assert len(history.list()) == 3
    assert history.list(limit=1)[0].job_id in {"a", "b"}
    assert history.totals() == {
        "total_runs": 4,
        "successful_runs": 3,
        "failed_runs": 1,
        "partially_failed_runs": 0,
    }


def test_prune_and_forget() -> None:
    history = RunHistory()
    for _ in range(4):
        history.record(_finished("a"))
    history.record(_finished("b"))

    assert history.prune(keep_per_job=1) == 3
    history.forget("b")

    assert [run.job_id for run in history.list()] == ["a"]
    assert history.totals()["total_runs"] == 5
