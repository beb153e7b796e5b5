"""
Page fetcher with bounded retries, exponential backoff and per-domain throttling.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from app.scraping.config.models import ScrapingSettings
from app.scraping.control import RunControl
from app.scraping.errors import FetchError
from app.scraping.logging_utils import log_event
from app.scraping.rate_limiter import DomainRateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    requests.Timeout,
    requests.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Attempt budget and delay schedule for one fetch.
    """

    max_attempts: int = 3
    initial_seconds: float = 0.5
    multiplier: float = 2.0
    jitter_seconds: float = 0.25
    max_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: ScrapingSettings) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_seconds=settings.backoff_initial_seconds,
            multiplier=settings.backoff_multiplier,
            jitter_seconds=settings.backoff_jitter_seconds,
            max_seconds=settings.backoff_max_seconds,
        )

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """
        Delay before the attempt following `attempt` (1-based).
        """

        base = self.initial_seconds * (self.multiplier ** (attempt - 1))
        jitter = rand() * self.jitter_seconds
        return max(0.0, min(self.max_seconds, base + jitter))


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    status_code: int | None = None


@dataclass(frozen=True)
class TerminalFailure:
    reason: str
    status_code: int | None = None


AttemptFailure = RetryableFailure | TerminalFailure


def classify_status(status_code: int) -> AttemptFailure | None:
    """
    Map an HTTP status to a failure class, or None for success.
    """

    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return RetryableFailure(f"HTTP {status_code}", status_code)
    if status_code >= 400:
        return TerminalFailure(f"HTTP {status_code}", status_code)
    return None


def classify_exception(exc: requests.RequestException) -> AttemptFailure:
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return RetryableFailure(f"{type(exc).__name__}: {exc}")
    return TerminalFailure(f"{type(exc).__name__}: {exc}")


class PageFetcher:
    """
    Retrieves raw page markup for a target URL.
    """

    def __init__(
        self,
        *,
        settings: ScrapingSettings,
        session: requests.Session | None = None,
        rate_limiter: DomainRateLimiter | None = None,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._rate_limiter = rate_limiter or DomainRateLimiter(
            default_rate_limit_per_second=settings.default_rate_limit_per_second
        )
        self._policy = policy or BackoffPolicy.from_settings(settings)
        self._sleep = sleep
        self._rand = rand
        self._headers = {
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        }

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def fetch(
        self,
        url: str,
        *,
        rate_limit_per_second: float | None = None,
        control: RunControl | None = None,
    ) -> str:
        """
        Fetch `url` and return the response body.

        Raises FetchError once a terminal failure is seen or the attempt
        budget is exhausted.
        """

        malformed = self._malformed_reason(url)
        if malformed is not None:
            raise FetchError(malformed, url=url, attempts=0, retryable=False)

        last_failure: AttemptFailure | None = None
        max_attempts = max(1, self._policy.max_attempts)

        for attempt in range(1, max_attempts + 1):
            if control is None:
                self._rate_limiter.wait(url=url, rate_limit_per_second=rate_limit_per_second)
            else:
                control.checkpoint("fetch attempt")
                self._rate_limiter.wait(
                    url=url,
                    rate_limit_per_second=rate_limit_per_second,
                    sleep=control.sleep,
                )
                control.checkpoint("fetch attempt")

            body, failure = self._attempt(url)
            if failure is None:
                log_event(logger, logging.DEBUG, "page_fetched", url=url, attempt=attempt)
                return body

            last_failure = failure
            log_event(
                logger,
                logging.WARNING,
                "page_fetch_attempt_failed",
                url=url,
                attempt=attempt,
                max_attempts=max_attempts,
                reason=failure.reason,
                retryable=isinstance(failure, RetryableFailure),
            )
            if isinstance(failure, TerminalFailure):
                raise FetchError(
                    f"Non-retryable failure fetching {url}: {failure.reason}",
                    url=url,
                    attempts=attempt,
                    status_code=failure.status_code,
                    retryable=False,
                )
            if attempt < max_attempts:
                delay = self._policy.delay_for(attempt, self._rand)
                if control is not None:
                    control.sleep(delay)
                else:
                    self._sleep(delay)

        assert last_failure is not None
        raise FetchError(
            f"Failed to fetch {url} after {max_attempts} attempt(s): {last_failure.reason}",
            url=url,
            attempts=max_attempts,
            status_code=last_failure.status_code,
        )

    def _attempt(self, url: str) -> tuple[str, AttemptFailure | None]:
        try:
            response = self._session.get(
                url,
                headers=self._headers,
                timeout=self._settings.timeout_seconds,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            return "", classify_exception(exc)

        failure = classify_status(response.status_code)
        if failure is not None:
            return "", failure
        return response.text, None

    @staticmethod
    def _malformed_reason(url: str) -> str | None:
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            return f"Malformed URL {url!r}: {exc}"
        if parsed.scheme not in {"http", "https"}:
            return f"Malformed URL {url!r}: scheme must be http or https"
        if not parsed.netloc:
            return f"Malformed URL {url!r}: missing host"
        return None
