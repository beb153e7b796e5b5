"""
Structured logging helpers for scrape jobs and the scheduler.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


def log_run_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    job_id: str,
    run_id: str | None = None,
    **fields: Any,
) -> None:
    """
    Emit a structured log line tagged with job and run identifiers.
    """

    if run_id is not None:
        fields["run_id"] = run_id
    log_event(logger, level, event, job_id=job_id, **fields)
