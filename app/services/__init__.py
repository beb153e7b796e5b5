"""
app/services package marker.
"""

from app.services.scrape_scheduler_service import (
    ScrapeSchedulerService,
    build_sample_job,
    get_scrape_scheduler_service,
)

__all__ = [
    "ScrapeSchedulerService",
    "build_sample_job",
    "get_scrape_scheduler_service",
]
