"""
tests/test_config_loader.py

Seed job JSON loading and settings helpers.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from app.config import get_scheduler_settings
from app.scraping.config import get_scraping_settings, load_job_definitions, normalize_selectors
from db.config import normalize_database_url, resolve_database_url


def _write(tmp_path: Path, payload: object) -> str:
    path = tmp_path / "jobs.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_load_job_definitions_parses_entries(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path,
        {
            "jobs": [
                {
                    "name": " Coastal listings ",
                    "target_url": "https://listings.example.com/coast",
                    "schedule": "0 0 */6 * * *",
                    "selectors": {"Title": "h2.title", "address": ["div.address", " "]},
                    "active": "no",
                    "container_selector": " div.card ",
                    "rate_limit_per_second": "0.5",
                },
                {"name": "missing url", "schedule": "0 0 2 * * *"},
                "not an object",
            ]
        },
    )

    jobs = load_job_definitions(config_path=config_path)

    assert len(jobs) == 1
    job = jobs[0]
    assert job.name == "Coastal listings"
    assert job.selectors == {"title": ["h2.title"], "address": ["div.address"]}
    assert job.active is False
    assert job.container_selector == "div.card"
    assert job.rate_limit_per_second == 0.5


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(config_path=str(tmp_path / "absent.json"))


def test_jobs_must_be_a_list(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_job_definitions(config_path=_write(tmp_path, {"jobs": {"name": "x"}}))


def test_normalize_selectors_drops_junk() -> None:
    assert normalize_selectors(None) == {}
    assert normalize_selectors({"price": 5, "": ["h1"], "city": [".city", 3, ""]}) == {"city": [".city"]}


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCHEDULER_MAX_WORKERS", "0")
    monkeypatch.setenv("SCHEDULER_TICK_SECONDS", "abc")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "Africa/Johannesburg")
    monkeypatch.setenv("SCRAPER_MAX_ATTEMPTS", "5")
    get_scheduler_settings.cache_clear()
    get_scraping_settings.cache_clear()
    try:
        scheduler = get_scheduler_settings()
        scraping = get_scraping_settings()
    finally:
        get_scheduler_settings.cache_clear()
        get_scraping_settings.cache_clear()

    assert scheduler.max_workers == 1
    assert scheduler.tick_seconds == 30.0
    assert scheduler.timezone == "Africa/Johannesburg"
    assert scraping.max_attempts == 5


def test_database_url_resolution(monkeypatch: pytest.MonkeyPatch) -> None:
    assert normalize_database_url(" postgres://u@db/listings ") == "postgresql+psycopg://u@db/listings"
    assert normalize_database_url("sqlite:///listings.db") == "sqlite:///listings.db"

    monkeypatch.setenv("DATABASE_URL", "")
    monkeypatch.setenv("LOCAL_DATABASE_URL", "postgresql://u@localhost/listings")
    assert resolve_database_url() == "postgresql+psycopg://u@localhost/listings"

    monkeypatch.setenv("DATABASE_URL", "mysql://u@db/listings")
    with pytest.raises(RuntimeError):
        resolve_database_url()
