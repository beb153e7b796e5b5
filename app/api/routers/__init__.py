"""
app/api/routers package marker.
"""

from app.api.routers.properties import router as properties_router
from app.api.routers.scrape_jobs import router as scrape_jobs_router

__all__ = [
    "properties_router",
    "scrape_jobs_router",
]
