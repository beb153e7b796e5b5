"""
app/repositories package marker.
"""

from app.repositories.property_repository import PropertyRepository
from app.repositories.scrape_job_repository import ScrapeJobRepository

__all__ = [
    "PropertyRepository",
    "ScrapeJobRepository",
]
