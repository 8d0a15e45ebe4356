# backend/courtbook/schemas/bookings.py

from datetime import date, datetime
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class RecurrenceConfig(BaseModel):
    frequency: Literal["daily", "weekly", "monthly"]
    interval: int = Field(1, ge=1)
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(None, ge=1)
    days_of_week: Optional[list[int]] = None  # 0 = Sunday


class BookingCreate(BaseModel):
    court_id: int
    start_time: datetime
    end_time: datetime
    user_id: Optional[int] = None

    recurrence: Optional[RecurrenceConfig] = None

    notes: Optional[str] = None
    payment_reference: Optional[str] = None
    annotations: Optional[dict[str, Any]] = None


class BookingConfirm(BaseModel):
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = None
    refund_amount: Optional[int] = None  # admin override, clamped to [0, total]
    notes: Optional[str] = None


class BookedSlotRead(BaseModel):
    id: int
    court_id: int
    start_time: datetime
    end_time: datetime
    status: str
    price: int
    expiry_at: Optional[datetime] = None
    occurrence_index: int

    model_config = {"from_attributes": True}


class BookingRead(BaseModel):
    id: int

    venue_id: int
    court_id: int
    user_id: Optional[int] = None

    start_time: datetime
    end_time: datetime

    status: str
    booking_type: str
    total_amount: int

    recurrence_id: Optional[str] = None
    recurrence_config: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    payment_reference: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[int] = None
    expired_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    annotations: Optional[dict[str, Any]] = None

    booked_slots: list[BookedSlotRead] = []

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReservationResponse(BaseModel):
    """Booking plus cache writes that failed after the durable commit."""
    booking: BookingRead
    cache_errors: list[str] = []

    model_config = {"from_attributes": True}


class RefundRead(BaseModel):
    amount: int
    percentage: int
    hours_before_start: float

    model_config = {"from_attributes": True}


class CancellationResponse(BaseModel):
    booking: BookingRead
    refund: RefundRead
    refund_recorded: bool
    errors: list[str] = []

    model_config = {"from_attributes": True}
