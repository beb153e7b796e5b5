"""
app/schemas package marker.
"""

from app.schemas.properties import PropertyResponse, PropertyStatsResponse
from app.schemas.scrape_jobs import (
    RunResultResponse,
    SchedulerStatsResponse,
    ScrapeJobCreatedResponse,
    ScrapeJobCreateRequest,
    ScrapeJobResponse,
    ScrapeJobUpdateRequest,
)

__all__ = [
    "PropertyResponse",
    "PropertyStatsResponse",
    "RunResultResponse",
    "SchedulerStatsResponse",
    "ScrapeJobCreatedResponse",
    "ScrapeJobCreateRequest",
    "ScrapeJobResponse",
    "ScrapeJobUpdateRequest",
]
