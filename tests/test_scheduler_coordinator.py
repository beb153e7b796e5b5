"""
tests/test_scheduler_coordinator.py

SchedulerCoordinator dispatch, overlap protection and job lifecycle.

Runs go through the real JobRunExecutor; the fetcher blocks on a gate so a
test can hold a run in flight while it pokes the coordinator from outside.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone

import pytest

from app.config import SchedulerSettings
from app.scheduler.coordinator import SchedulerCoordinator
from app.scraping.errors import JobAlreadyRunning, JobNotFound, JobValidationError, SchedulerUnavailable
from app.scraping.executor import JobRunExecutor
from app.scraping.types import RunResult, RunStatus, RunTrigger, ScrapeJobDefinition
from conftest import LISTING_PAGE, RecordingStore, StaticFetcher, make_job

T0 = datetime(2026, 10, 18, 1, 0, tzinfo=timezone.utc)
DUE = datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)


class GatedFetcher(StaticFetcher):
    """
    Blocks every fetch until `gate` is set, tracking concurrency.
    """

    def __init__(self, markup: str = LISTING_PAGE) -> None:
        super().__init__(markup, before_return=self._hold)
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    def _hold(self) -> None:
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        self.entered.set()
        self.gate.wait(timeout=5)
        with self._lock:
            self._active -= 1


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _eventually(predicate: Callable[[], bool], *, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        time.sleep(0.01)


def _build(
    fetcher: GatedFetcher,
    store: RecordingStore,
    clock: MutableClock,
    **settings: object,
) -> SchedulerCoordinator:
    values: dict[str, object] = {"max_workers": 4, "run_timeout_seconds": 30.0}
    values.update(settings)
    return SchedulerCoordinator(
        executor=JobRunExecutor(fetcher=fetcher, store=store),  # type: ignore[arg-type]
        settings=SchedulerSettings(**values),  # type: ignore[arg-type]
        clock=clock,
    )


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(T0)


@pytest.fixture()
def fetcher() -> GatedFetcher:
    return GatedFetcher()


@pytest.fixture()
def coordinator(
    fetcher: GatedFetcher,
    recording_store: RecordingStore,
    clock: MutableClock,
) -> Iterator[SchedulerCoordinator]:
    coordinator = _build(fetcher, recording_store, clock)
    yield coordinator
    fetcher.gate.set()
    coordinator.shutdown(wait=True)


@pytest.fixture()
def job(coordinator: SchedulerCoordinator) -> ScrapeJobDefinition:
    return coordinator.add_job(make_job())


def _skip_events(caplog: pytest.LogCaptureFixture) -> list[str]:
    return [
        record.getMessage()
        for record in caplog.records
        if '"event": "scheduled_run_skipped"' in record.getMessage()
    ]


# ---------------------------------------------------------------------------
# Job table
# ---------------------------------------------------------------------------


def test_add_job_computes_next_due(job: ScrapeJobDefinition) -> None:
    assert job.next_due_at == DUE
    assert job.last_run_at is None


def test_add_job_keeps_future_due_time_and_replaces_past_one(coordinator: SchedulerCoordinator) -> None:
    future = datetime(2026, 10, 20, 2, 0, tzinfo=timezone.utc)
    kept = coordinator.add_job(make_job(next_due_at=future))
    stale = coordinator.add_job(make_job(next_due_at=T0 - timedelta(days=3)))

    assert kept.next_due_at == future
    assert stale.next_due_at == DUE


def test_add_job_rejects_invalid_definition(coordinator: SchedulerCoordinator) -> None:
    with pytest.raises(JobValidationError) as exc_info:
        coordinator.add_job(make_job(schedule="not a cron", target_url="ftp://x"))

    assert len(exc_info.value.issues) == 2
    assert coordinator.list_jobs() == []


def test_update_schedule_recomputes_next_due(
    coordinator: SchedulerCoordinator,
    job: ScrapeJobDefinition,
) -> None:
    updated = coordinator.update_job(job.id, schedule="0 30 3 * * *", name="Renamed")

    assert updated.next_due_at == datetime(2026, 10, 18, 3, 30, tzinfo=timezone.utc)
    assert updated.created_at == job.created_at
    assert coordinator.get_job(job.id).name == "Renamed"


def test_update_rejects_unknown_fields(coordinator: SchedulerCoordinator, job: ScrapeJobDefinition) -> None:
    with pytest.raises(ValueError):
        coordinator.update_job(job.id, id="other")


def test_unknown_job_raises_not_found(coordinator: SchedulerCoordinator) -> None:
    with pytest.raises(JobNotFound):
        coordinator.get_job("missing")
    with pytest.raises(JobNotFound):
        coordinator.run_now("missing")
    with pytest.raises(JobNotFound):
        coordinator.update_job("missing", name="x")
    with pytest.raises(JobNotFound):
        coordinator.delete_job("missing")


def test_delete_idle_job(coordinator: SchedulerCoordinator, job: ScrapeJobDefinition) -> None:
    coordinator.delete_job(job.id)

    assert coordinator.list_jobs() == []
    assert coordinator.tick(now=DUE) == []


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_tick_dispatches_only_due_active_jobs(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    clock: MutableClock,
) -> None:
    due = coordinator.add_job(make_job(name="due"))
    coordinator.add_job(make_job(name="later", schedule="0 0 5 * * *"))
    coordinator.add_job(make_job(name="paused", active=False))
    fetcher.gate.set()
    clock.now = DUE + timedelta(seconds=5)

    dispatched = coordinator.tick(now=DUE)

    assert [run.job_id for run in dispatched] == [due.id]
    assert dispatched[0].trigger == RunTrigger.SCHEDULED
    _eventually(lambda: coordinator.get_job(due.id).last_run_at is not None)

    finished = coordinator.get_job(due.id)
    assert finished.last_run_at == clock.now
    assert finished.next_due_at == DUE + timedelta(days=1)
    assert dispatched[0].status == RunStatus.SUCCEEDED


def test_run_now_wait_returns_terminal_result(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    recording_store: RecordingStore,
    job: ScrapeJobDefinition,
) -> None:
    fetcher.gate.set()

    run = coordinator.run_now(job.id, wait=True)

    assert run.status == RunStatus.SUCCEEDED
    assert run.trigger == RunTrigger.MANUAL
    assert run.items_new == 2
    assert len(recording_store.rows) == 2
    assert coordinator.list_runs(job.id) == [run]


def test_run_now_while_running_raises(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
) -> None:
    coordinator.run_now(job.id)
    assert fetcher.entered.wait(timeout=5)

    with pytest.raises(JobAlreadyRunning):
        coordinator.run_now(job.id)

    in_flight = coordinator.list_runs(job.id)
    assert len(in_flight) == 1
    assert in_flight[0].status == RunStatus.RUNNING


def test_due_while_running_is_skipped_and_logged_once(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="app.scheduler.coordinator")
    coordinator.run_now(job.id)
    assert fetcher.entered.wait(timeout=5)

    assert coordinator.tick(now=DUE) == []
    assert coordinator.tick(now=DUE + timedelta(seconds=30)) == []
    assert coordinator.tick(now=DUE + timedelta(seconds=60)) == []

    skipped = _skip_events(caplog)
    assert len(skipped) == 1
    assert job.id in skipped[0]

    fetcher.gate.set()
    _eventually(lambda: len(coordinator.list_runs(job.id)) == 1 and coordinator.list_runs(job.id)[0].is_terminal)
    assert len(fetcher.calls) == 1


def test_scheduled_run_overrunning_into_next_occurrence_logs_that_occurrence(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="app.scheduler.coordinator")
    dispatched = coordinator.tick(now=DUE)
    assert len(dispatched) == 1
    assert fetcher.entered.wait(timeout=5)

    # The in-flight run is serving 02:00 itself.
    coordinator.tick(now=DUE + timedelta(seconds=30))
    assert _skip_events(caplog) == []

    next_day = DUE + timedelta(days=1)
    coordinator.tick(now=next_day + timedelta(seconds=1))
    coordinator.tick(now=next_day + timedelta(seconds=31))

    skipped = _skip_events(caplog)
    assert len(skipped) == 1
    assert str(next_day) in skipped[0]

    fetcher.gate.set()
    _eventually(lambda: dispatched[0].is_terminal)
    assert len(fetcher.calls) == 1


def test_concurrent_triggers_start_exactly_one_run(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
) -> None:
    started: list[RunResult] = []
    rejected: list[Exception] = []
    barrier = threading.Barrier(9)
    lock = threading.Lock()

    def manual() -> None:
        barrier.wait()
        try:
            run = coordinator.run_now(job.id)
        except JobAlreadyRunning as exc:
            with lock:
                rejected.append(exc)
            return
        with lock:
            started.append(run)

    def scheduled() -> None:
        barrier.wait()
        runs = coordinator.tick(now=DUE)
        with lock:
            started.extend(runs)

    threads = [threading.Thread(target=manual) for _ in range(8)]
    threads.append(threading.Thread(target=scheduled))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(started) == 1
    assert len(rejected) in (7, 8)

    fetcher.gate.set()
    _eventually(lambda: started[0].is_terminal)
    assert len(fetcher.calls) == 1
    assert fetcher.max_active == 1


def test_single_worker_runs_in_submission_order(
    fetcher: GatedFetcher,
    recording_store: RecordingStore,
    clock: MutableClock,
) -> None:
    coordinator = _build(fetcher, recording_store, clock, max_workers=1)
    try:
        first = coordinator.add_job(make_job(target_url="https://a.example.com/list"))
        second = coordinator.add_job(make_job(target_url="https://b.example.com/list"))

        run_a = coordinator.run_now(first.id)
        assert fetcher.entered.wait(timeout=5)
        run_b = coordinator.run_now(second.id)

        assert fetcher.calls == ["https://a.example.com/list"]
        assert run_b.status == RunStatus.PENDING

        fetcher.gate.set()
        _eventually(lambda: run_a.is_terminal and run_b.is_terminal)
        assert fetcher.calls == ["https://a.example.com/list", "https://b.example.com/list"]
        assert fetcher.max_active == 1
    finally:
        fetcher.gate.set()
        coordinator.shutdown(wait=True)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


def test_delete_during_run_discards_result(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    recording_store: RecordingStore,
    job: ScrapeJobDefinition,
) -> None:
    run = coordinator.run_now(job.id)
    assert fetcher.entered.wait(timeout=5)

    coordinator.delete_job(job.id)

    with pytest.raises(JobNotFound):
        coordinator.get_job(job.id)
    assert coordinator.list_jobs() == []

    fetcher.gate.set()
    _eventually(lambda: run.is_terminal and coordinator.job_stats()["running_jobs"] == 0)

    assert run.error_kind == "Cancelled"
    assert recording_store.batches == []
    assert coordinator.list_runs() == []
    assert coordinator.tick(now=DUE) == []


def test_deactivating_a_running_job_cancels_it(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
) -> None:
    run = coordinator.run_now(job.id)
    assert fetcher.entered.wait(timeout=5)

    paused = coordinator.update_job(job.id, active=False)
    fetcher.gate.set()
    _eventually(lambda: coordinator.list_runs(job.id) == [run] and run.is_terminal)

    assert paused.active is False
    assert run.status == RunStatus.FAILED
    assert run.error_kind == "Cancelled"
    assert coordinator.tick(now=DUE + timedelta(days=7)) == []


def test_run_past_its_budget_times_out(
    fetcher: GatedFetcher,
    recording_store: RecordingStore,
    clock: MutableClock,
) -> None:
    coordinator = _build(fetcher, recording_store, clock, run_timeout_seconds=0.05)
    try:
        job = coordinator.add_job(make_job())
        run = coordinator.run_now(job.id)
        assert fetcher.entered.wait(timeout=5)
        time.sleep(0.2)
        fetcher.gate.set()
        _eventually(lambda: run.is_terminal)

        assert run.status == RunStatus.FAILED
        assert run.error_kind == "Timeout"
        assert recording_store.batches == []
    finally:
        fetcher.gate.set()
        coordinator.shutdown(wait=True)


def test_shutdown_rejects_new_runs(coordinator: SchedulerCoordinator, job: ScrapeJobDefinition) -> None:
    coordinator.shutdown()

    with pytest.raises(SchedulerUnavailable):
        coordinator.run_now(job.id)
    assert coordinator.running is False


# ---------------------------------------------------------------------------
# History and stats
# ---------------------------------------------------------------------------


def test_stats_and_history_pruning(
    coordinator: SchedulerCoordinator,
    fetcher: GatedFetcher,
    job: ScrapeJobDefinition,
) -> None:
    coordinator.add_job(make_job(name="paused", active=False))
    fetcher.gate.set()
    runs = [coordinator.run_now(job.id, wait=True) for _ in range(3)]

    assert coordinator.list_runs(job.id, limit=2) == coordinator.list_runs(job.id)[:2]
    assert coordinator.job_stats() == {
        "total_jobs": 2,
        "active_jobs": 1,
        "running_jobs": 0,
        "total_runs": 3,
        "successful_runs": 3,
        "failed_runs": 0,
        "partially_failed_runs": 0,
    }

    assert coordinator.prune_history(keep_per_job=1) == 2
    assert [run.id for run in coordinator.list_runs(job.id)] == [runs[-1].id]
    assert coordinator.job_stats()["total_runs"] == 3
