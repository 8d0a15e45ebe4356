# backend/courtbook/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field


class SlotRead(BaseModel):
    """A single bookable slot."""
    start_time: datetime
    end_time: datetime
    price: int

    model_config = {"from_attributes": True}


class CourtDaySlotsRead(BaseModel):
    """Free slots of one court on one venue-local date."""
    venue_id: int
    venue_name: str
    court_id: int
    court_name: str
    date: date
    timezone: str
    slots: list[SlotRead]

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    slots: list[CourtDaySlotsRead]
    total: int
    has_more: bool = Field(description="Venue page was full; request the next offset")

    model_config = {"from_attributes": True}


class CacheRebuildRequest(BaseModel):
    """Rebuild a venue's cached days from booked slots (admin)."""
    venue_id: int
    date_from: date
    date_to: date | None = None  # Defaults to date_from


class CacheRebuildResponse(BaseModel):
    venue_id: int
    dates: list[date]
    deleted_keys: int
    confirmed: int
    reserved: int
    errors: list[str] = []

    model_config = {"from_attributes": True}
