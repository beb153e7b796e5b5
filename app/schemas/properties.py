"""
app/schemas/properties.py

Response schemas for persisted property listings.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PropertyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_url: str
    title: str
    price: int | None = None
    address: str
    province: str
    city: str
    suburb: str | None = None
    property_type: str
    bedrooms: int | None = None
    bathrooms: int | None = None
    garage_spaces: int | None = None
    land_size: float | None = None
    floor_size: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    scraped_at: datetime
    created_at: datetime
    updated_at: datetime


class PropertyStatsResponse(BaseModel):
    """
    Aggregate listing counts.
    """

    total_properties: int = Field(..., ge=0)
    properties_today: int = Field(..., ge=0)
    average_price: float | None = None
    by_city: dict[str, int] = Field(default_factory=dict)
    by_property_type: dict[str, int] = Field(default_factory=dict)
