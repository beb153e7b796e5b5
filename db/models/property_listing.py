"""
db/models/property_listing.py

Persisted property listing, unique per source URL.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin, utc_now

# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER primary keys.
_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class PropertyListing(Base, TimestampMixin):
    """
    One scraped property listing.

    Re-scraping the same `source_url` updates this row in place; the
    scraping pipeline never deletes rows.
    """

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    province: Mapped[str] = mapped_column(String(120), nullable=False, default="unknown")
    city: Mapped[str] = mapped_column(String(120), nullable=False, default="unknown")
    suburb: Mapped[str | None] = mapped_column(String(120), nullable=True)
    property_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="unknown",
        comment="residential, commercial, industrial, ...",
    )
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    garage_spaces: Mapped[int | None] = mapped_column(Integer, nullable=True)
    land_size: Mapped[float | None] = mapped_column(Float, nullable=True, comment="square metres")
    floor_size: Mapped[float | None] = mapped_column(Float, nullable=True, comment="square metres")
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    scraped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    __table_args__ = (
        UniqueConstraint("source_url", name="uq_properties_source_url"),
        Index("ix_properties_city", "city"),
        Index("ix_properties_price", "price"),
        Index("ix_properties_property_type", "property_type"),
        Index("ix_properties_created_at", "created_at"),
    )
