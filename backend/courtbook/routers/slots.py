# backend/courtbook/routers/slots.py
"""
Slots API endpoints.

GET  /slots/available - Free, priced slots across venues/courts/dates
POST /slots/rebuild   - Rebuild a venue's slot cache from booked slots (admin)
"""

from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_availability_service, get_slot_store
from ..errors import ValidationError
from ..schemas.slots import (
    AvailabilityResponse,
    CacheRebuildRequest,
    CacheRebuildResponse,
    CourtDaySlotsRead,
    SlotRead,
)
from ..services.slots import AvailabilityService, SlotsRedisStore, rebuild_venue_cache
from ..services.slots.invalidator import get_affected_dates


router = APIRouter(prefix="/slots", tags=["slots"])


def parse_venue_ids(raw: str | None) -> list[int] | None:
    """Parse "1,2,3" into ids; blank means no filter."""
    if not raw or not raw.strip():
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError(
            "venue_ids must be a comma-separated list of integers",
            details={"venue_ids": raw},
        )


@router.get("/available", response_model=AvailabilityResponse)
def get_available_slots(
    date_from: date | None = None,
    date_to: date | None = None,
    duration: int | None = Query(None, description="Slot length in minutes (60/90/120)"),
    venue_ids: str | None = Query(None, description="Comma-separated venue ids"),
    limit: int | None = None,
    offset: int = 0,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Get free, priced slots grouped by venue, court and date."""
    result = service.find_available(
        date_from=date_from,
        date_to=date_to,
        duration=duration,
        venue_ids=parse_venue_ids(venue_ids),
        limit=limit,
        offset=offset,
    )

    return AvailabilityResponse(
        slots=[
            CourtDaySlotsRead(
                venue_id=group.venue_id,
                venue_name=group.venue_name,
                court_id=group.court_id,
                court_name=group.court_name,
                date=group.date,
                timezone=group.timezone,
                slots=[SlotRead.model_validate(slot) for slot in group.slots],
            )
            for group in result.slots
        ],
        total=result.total,
        has_more=result.has_more,
    )


@router.post("/rebuild", response_model=CacheRebuildResponse)
def rebuild_slots_cache(
    data: CacheRebuildRequest,
    db: Session = Depends(get_db),
    store: SlotsRedisStore = Depends(get_slot_store),
):
    """Drop and rebuild cached confirmed/reserved slots of a venue."""
    date_to = data.date_to or data.date_from
    if date_to < data.date_from:
        raise ValidationError("date_to must not be before date_from")
    if (date_to - data.date_from).days > store.config.max_range_days:
        raise ValidationError(f"Date range cannot exceed {store.config.max_range_days} days")

    report = rebuild_venue_cache(
        db,
        store,
        data.venue_id,
        get_affected_dates(data.date_from, date_to),
        store.clock,
    )
    return CacheRebuildResponse.model_validate(report)
