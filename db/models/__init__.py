"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.property_listing import PropertyListing
from db.models.scrape_job import ScrapeJob, ScrapeRun

__all__ = [
    "PropertyListing",
    "ScrapeJob",
    "ScrapeRun",
]
