"""
app/repositories/property_repository.py

Persistence layer for scraped property listings.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.scraping.types import LISTING_FIELDS, ExtractedRecord
from db.base import utc_now
from db.models.property_listing import PropertyListing

_LOOKUP_CHUNK_SIZE = 500
_PLACEHOLDER = "unknown"
_UPDATABLE_FIELDS = tuple(field for field in LISTING_FIELDS if field != "source_url") + ("scraped_at",)


class PropertyRepository:
    """
    Repository for property rows keyed by `source_url`.

    Methods never commit; transaction boundaries belong to the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, property_id: int) -> PropertyListing | None:
        return self._session.get(PropertyListing, property_id)

    def get_by_source_url(self, source_url: str) -> PropertyListing | None:
        stmt = select(PropertyListing).where(PropertyListing.source_url == source_url)
        return self._session.scalars(stmt).one_or_none()

    def find_by_source_urls(
        self,
        source_urls: Sequence[str],
        *,
        for_update: bool = False,
    ) -> dict[str, PropertyListing]:
        """
        Load existing rows for the given URLs, optionally row-locked.
        """

        found: dict[str, PropertyListing] = {}
        unique_urls = sorted(set(source_urls))
        for start in range(0, len(unique_urls), _LOOKUP_CHUNK_SIZE):
            chunk = unique_urls[start : start + _LOOKUP_CHUNK_SIZE]
            stmt = select(PropertyListing).where(PropertyListing.source_url.in_(chunk))
            if for_update:
                stmt = stmt.with_for_update()
            for row in self._session.scalars(stmt):
                found[row.source_url] = row
        return found

    def insert(self, record: ExtractedRecord) -> PropertyListing:
        now = utc_now()
        row = PropertyListing(**record.as_row(), created_at=now, updated_at=now)
        self._session.add(row)
        return row

    @staticmethod
    def apply_update(row: PropertyListing, record: ExtractedRecord) -> PropertyListing:
        """
        Overwrite non-null incoming fields and refresh `updated_at`.

        `source_url` and `created_at` are never touched. Placeholder text
        values do not replace real ones.
        """

        incoming = record.as_row()
        for field in _UPDATABLE_FIELDS:
            value = incoming.get(field)
            if value is None:
                continue
            if value == _PLACEHOLDER and getattr(row, field) not in (None, ""):
                continue
            setattr(row, field, value)
        row.updated_at = utc_now()
        return row

    def search(
        self,
        *,
        city: str | None = None,
        province: str | None = None,
        property_type: str | None = None,
        min_price: int | None = None,
        max_price: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[PropertyListing]:
        stmt: Select[tuple[PropertyListing]] = select(PropertyListing)

        if city:
            stmt = stmt.where(func.lower(PropertyListing.city) == city.strip().lower())
        if province:
            stmt = stmt.where(func.lower(PropertyListing.province) == province.strip().lower())
        if property_type:
            stmt = stmt.where(PropertyListing.property_type == property_type.strip().lower())
        if min_price is not None:
            stmt = stmt.where(PropertyListing.price >= min_price)
        if max_price is not None:
            stmt = stmt.where(PropertyListing.price <= max_price)

        stmt = stmt.order_by(PropertyListing.updated_at.desc(), PropertyListing.id.desc())
        stmt = stmt.offset(max(0, offset)).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def recent(self, *, days: int = 7, limit: int = 100) -> list[PropertyListing]:
        since = datetime.now(timezone.utc) - timedelta(days=max(0, days))
        stmt = (
            select(PropertyListing)
            .where(PropertyListing.created_at >= since)
            .order_by(PropertyListing.created_at.desc(), PropertyListing.id.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def count(self) -> int:
        return int(self._session.scalar(select(func.count(PropertyListing.id))) or 0)

    def stats(self, *, top: int = 10) -> dict[str, Any]:
        """
        Aggregate counts used by statistics endpoints.
        """

        start_of_day = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        total = self.count()
        added_today = self._session.scalar(
            select(func.count(PropertyListing.id)).where(PropertyListing.created_at >= start_of_day)
        )
        average_price = self._session.scalar(
            select(func.avg(PropertyListing.price)).where(PropertyListing.price.is_not(None))
        )

        by_city = self._session.execute(
            select(PropertyListing.city, func.count(PropertyListing.id).label("n"))
            .group_by(PropertyListing.city)
            .order_by(func.count(PropertyListing.id).desc(), PropertyListing.city)
            .limit(max(1, top))
        ).all()
        by_type = self._session.execute(
            select(PropertyListing.property_type, func.count(PropertyListing.id).label("n"))
            .group_by(PropertyListing.property_type)
            .order_by(func.count(PropertyListing.id).desc(), PropertyListing.property_type)
        ).all()

        return {
            "total_properties": total,
            "properties_today": int(added_today or 0),
            "average_price": float(average_price) if average_price is not None else None,
            "by_city": {city: int(n) for city, n in by_city},
            "by_property_type": {ptype: int(n) for ptype, n in by_type},
        }
