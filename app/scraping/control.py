"""
Cooperative cancellation and deadline handling for in-flight runs.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from app.scraping.errors import RunCancelled, RunTimeout


class RunControl:
    """
    Stop signal shared between the coordinator and one executing run.

    The run polls `checkpoint()` at step boundaries; nothing here interrupts
    a step that is already executing.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._cancelled = threading.Event()
        self._reason = ""
        self._timeout_seconds = timeout_seconds
        self._deadline: float | None = None

    def begin(self) -> None:
        """
        Start the time budget; queue time before a worker picks the run up is not counted.
        """

        if self._timeout_seconds and self._deadline is None:
            self._deadline = self._clock() + self._timeout_seconds

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled.is_set():
            self._reason = reason
            self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def checkpoint(self, step: str) -> None:
        """
        Raise if the run was cancelled or ran past its deadline.
        """

        if self._cancelled.is_set():
            raise RunCancelled(f"Run cancelled before {step}: {self._reason}")
        if self.expired:
            raise RunTimeout(f"Run exceeded its time budget before {step}")

    def sleep(self, seconds: float) -> None:
        """
        Wait up to `seconds`, waking early on cancellation or deadline.
        """

        if seconds <= 0:
            return
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancelled.wait(seconds)
