"""
Domain-aware request rate limiter.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from urllib.parse import urlparse


class DomainRateLimiter:
    """
    Enforces a minimum interval between requests per domain.

    Slots are reserved under the lock and slept outside it, so callers
    targeting different domains never wait on each other.
    """

    def __init__(
        self,
        *,
        default_rate_limit_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._default_rate_limit_per_second = max(0.01, default_rate_limit_per_second)
        self._clock = clock
        self._sleep = sleep
        self._next_slot_by_domain: dict[str, float] = {}
        self._lock = threading.Lock()

    def reserve(self, *, url: str, rate_limit_per_second: float | None = None) -> float:
        """
        Reserve the next request slot for the URL's domain and return the wait in seconds.
        """

        domain = self.domain_of(url)
        if not domain:
            return 0.0

        effective_rps = max(0.01, rate_limit_per_second or self._default_rate_limit_per_second)
        min_interval = 1.0 / effective_rps

        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot_by_domain.get(domain, now))
            self._next_slot_by_domain[domain] = slot + min_interval
        return slot - now

    def wait(
        self,
        *,
        url: str,
        rate_limit_per_second: float | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> float:
        """
        Sleep as needed so outbound requests respect per-domain throttling.

        `sleep` overrides the limiter's own sleep for this call, e.g. a run's
        cancellable wait.
        """

        delay = self.reserve(url=url, rate_limit_per_second=rate_limit_per_second)
        if delay > 0:
            (sleep or self._sleep)(delay)
        return delay

    @staticmethod
    def domain_of(url: str) -> str:
        parsed = urlparse(url)
        return parsed.netloc.lower() or parsed.path.lower()
