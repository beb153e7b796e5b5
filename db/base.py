"""
db/base.py

Declarative base, column types and the timestamp mixin shared by the
listing and scrape job tables.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for PropertyListing, ScrapeJob and ScrapeRun.
    """

    type_annotation_map: dict[type, Any] = {}


class TimestampMixin:
    """
    created_at / updated_at pair, timezone-aware.

    Python-side defaults cover ORM inserts; server defaults cover rows
    written by migrations or raw SQL. Repositories that need an exact
    insert time (the listing upsert) set both columns explicitly.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )
