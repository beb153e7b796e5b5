"""
Config helpers for property scraping.
"""

from app.scraping.config.loader import (
    get_scraping_settings,
    load_job_definitions,
    normalize_selectors,
)
from app.scraping.config.models import ScrapingSettings

__all__ = [
    "ScrapingSettings",
    "get_scraping_settings",
    "load_job_definitions",
    "normalize_selectors",
]
