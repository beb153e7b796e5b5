"""
Environment + JSON config loader for property scraping.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from app.config import (
    _get_float_env,
    _get_int_env,
    _get_optional_str_env,
    _get_str_env,
)
from app.scraping.config.models import DEFAULT_USER_AGENT, ScrapingSettings
from app.scraping.types import ScrapeJobDefinition


def _project_root() -> Path:
    return Path(__file__).resolve().parents[3]


def _resolve_config_path(raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (_project_root() / candidate).resolve()


@lru_cache(maxsize=1)
def get_scraping_settings() -> ScrapingSettings:
    """
    Return cached scraper settings from environment variables.
    """

    jobs_path = _get_optional_str_env("SCRAPER_JOBS_CONFIG_PATH")
    return ScrapingSettings(
        user_agent=_get_str_env("SCRAPER_USER_AGENT", DEFAULT_USER_AGENT),
        timeout_seconds=max(1.0, _get_float_env("SCRAPER_TIMEOUT_SECONDS", 30.0)),
        max_attempts=max(1, _get_int_env("SCRAPER_MAX_ATTEMPTS", 3)),
        backoff_initial_seconds=max(
            0.0,
            _get_float_env("SCRAPER_BACKOFF_INITIAL_SECONDS", 0.5),
        ),
        backoff_multiplier=max(1.0, _get_float_env("SCRAPER_BACKOFF_MULTIPLIER", 2.0)),
        backoff_jitter_seconds=max(0.0, _get_float_env("SCRAPER_BACKOFF_JITTER_SECONDS", 0.25)),
        backoff_max_seconds=max(0.0, _get_float_env("SCRAPER_BACKOFF_MAX_SECONDS", 30.0)),
        default_rate_limit_per_second=max(
            0.01,
            _get_float_env("SCRAPER_RATE_LIMIT_PER_SECOND", 1.0),
        ),
        jobs_config_path=str(_resolve_config_path(jobs_path)) if jobs_path else None,
    )


def load_job_definitions(*, config_path: str) -> list[ScrapeJobDefinition]:
    """
    Load seed job definitions from a JSON file with a top-level `jobs` list.

    Entries missing a name, URL or schedule are dropped here; everything else
    is validated when the job is registered with the coordinator.
    """

    path = _resolve_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Scrape job config file not found: {path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    jobs = raw_data.get("jobs", []) if isinstance(raw_data, dict) else []
    if not isinstance(jobs, list):
        raise ValueError("Invalid scrape job config: 'jobs' must be a list.")

    parsed: list[ScrapeJobDefinition] = []
    for entry in jobs:
        if not isinstance(entry, dict):
            continue

        name = str(entry.get("name", "")).strip()
        target_url = str(entry.get("target_url", "")).strip()
        schedule = str(entry.get("schedule", "")).strip()
        if not name or not target_url or not schedule:
            continue

        parsed.append(
            ScrapeJobDefinition(
                name=name,
                target_url=target_url,
                schedule=schedule,
                selectors=normalize_selectors(entry.get("selectors", {})),
                active=_optional_bool(entry.get("active"), True),
                container_selector=_optional_str(entry.get("container_selector")),
                rate_limit_per_second=_optional_float(entry.get("rate_limit_per_second")),
            )
        )

    return parsed


def normalize_selectors(selectors: object) -> dict[str, list[str]]:
    """
    Coerce a field -> selector(s) mapping into ordered candidate lists.
    """

    if not isinstance(selectors, dict):
        return {}

    normalized: dict[str, list[str]] = {}
    for key, value in selectors.items():
        if not isinstance(key, str) or not key.strip():
            continue
        if isinstance(value, str):
            selector_list = [value.strip()] if value.strip() else []
        elif isinstance(value, (list, tuple)):
            selector_list = [
                item.strip()
                for item in value
                if isinstance(item, str) and item.strip()
            ]
        else:
            selector_list = []
        if selector_list:
            normalized[key.strip().lower()] = selector_list
    return normalized


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _optional_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default
