"""
app/api/routers/properties.py

Read endpoints over persisted property listings.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.repositories.property_repository import PropertyRepository
from app.schemas.properties import PropertyResponse, PropertyStatsResponse
from db.session import get_db

router = APIRouter(prefix="/properties", tags=["properties"])


@router.get("/search", response_model=list[PropertyResponse])
def search_properties(
    city: str | None = Query(default=None),
    province: str | None = Query(default=None),
    property_type: str | None = Query(default=None),
    min_price: int | None = Query(default=None, ge=0),
    max_price: int | None = Query(default=None, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[PropertyResponse]:
    """
    Filter listings; all given filters apply together.
    """

    if min_price is not None and max_price is not None and min_price > max_price:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="min_price must not exceed max_price",
        )
    rows = PropertyRepository(db).search(
        city=city,
        province=province,
        property_type=property_type,
        min_price=min_price,
        max_price=max_price,
        limit=limit,
        offset=offset,
    )
    return [PropertyResponse.model_validate(row) for row in rows]


@router.get("/recent", response_model=list[PropertyResponse])
def recent_properties(
    days: int = Query(default=7, ge=0, le=365),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[PropertyResponse]:
    rows = PropertyRepository(db).recent(days=days, limit=limit)
    return [PropertyResponse.model_validate(row) for row in rows]


@router.get("/stats", response_model=PropertyStatsResponse)
def property_stats(
    top: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> PropertyStatsResponse:
    return PropertyStatsResponse(**PropertyRepository(db).stats(top=top))


@router.get("/{property_id}", response_model=PropertyResponse)
def get_property(
    property_id: int,
    db: Session = Depends(get_db),
) -> PropertyResponse:
    row = PropertyRepository(db).get(property_id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Property {property_id} not found",
        )
    return PropertyResponse.model_validate(row)
