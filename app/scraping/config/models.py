"""
Scraping configuration models.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass(frozen=True)
class ScrapingSettings:
    """
    Runtime settings for page fetching and extraction.
    """

    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    backoff_jitter_seconds: float = 0.25
    backoff_max_seconds: float = 30.0
    default_rate_limit_per_second: float = 1.0
    jobs_config_path: str | None = None
