"""
app/scheduler/jobs.py

APScheduler wiring for the scrape job tick loop.

APScheduler only drives the clock here: one interval job calls the
coordinator's ``tick`` every ``SCHEDULER_TICK_SECONDS``. Due-time evaluation,
dispatch and overlap protection stay in the coordinator so the same rules
apply to scheduled and manual runs.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down on app shutdown. The coordinator does both
from ``start()`` / ``shutdown()``, which the FastAPI lifespan in main.py calls.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import SchedulerSettings

logger = logging.getLogger(__name__)

TICK_JOB_ID = "scrape_job_tick"


def _safe_tick(tick: Callable[[], Any]) -> None:
    """Run one tick; a failing tick must not unschedule the loop."""
    try:
        tick()
    except Exception:  # noqa: BLE001
        logger.exception("Scrape scheduler tick failed")


def build_scheduler(tick: Callable[[], Any], *, settings: SchedulerSettings) -> BackgroundScheduler:
    """
    Build the tick scheduler.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    ``max_instances=1`` and ``coalesce=True`` mean a slow tick is never
    overlapped by the next one and backed-up ticks collapse into one.
    """
    scheduler = BackgroundScheduler(timezone=settings.timezone)
    scheduler.add_job(
        _safe_tick,
        trigger="interval",
        seconds=settings.tick_seconds,
        args=[tick],
        id=TICK_JOB_ID,
        name="Scrape job due-time check",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=max(1, int(settings.tick_seconds)),
    )
    return scheduler
