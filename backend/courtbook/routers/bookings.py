# backend/courtbook/routers/bookings.py

from fastapi import APIRouter, Depends, status

from ..dependencies import get_reservation_manager
from ..schemas.bookings import (
    BookingCancel,
    BookingConfirm,
    BookingCreate,
    BookingRead,
    CancellationResponse,
    RefundRead,
    ReservationResponse,
)
from ..services.recurrence import RecurrenceSpec
from ..services.reservations import ReservationManager, ReservationRequest


router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    """Create a pending booking and hold its slots for the payment window."""
    recurrence = None
    if data.recurrence is not None:
        recurrence = RecurrenceSpec.from_dict(data.recurrence.model_dump())

    result = manager.create(ReservationRequest(
        court_id=data.court_id,
        start_time=data.start_time,
        end_time=data.end_time,
        user_id=data.user_id,
        recurrence=recurrence,
        notes=data.notes,
        payment_reference=data.payment_reference,
        annotations=data.annotations,
    ))
    return ReservationResponse(
        booking=BookingRead.model_validate(result.booking),
        cache_errors=result.cache_errors,
    )


@router.get("/{booking_id}", response_model=BookingRead)
def get_booking(
    booking_id: int,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    return manager.get(booking_id)


@router.post("/{booking_id}/confirm", response_model=ReservationResponse)
def confirm_booking(
    booking_id: int,
    data: BookingConfirm | None = None,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    data = data or BookingConfirm()
    result = manager.confirm(
        booking_id,
        payment_reference=data.payment_reference,
        notes=data.notes,
    )
    return ReservationResponse(
        booking=BookingRead.model_validate(result.booking),
        cache_errors=result.cache_errors,
    )


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
def cancel_booking(
    booking_id: int,
    data: BookingCancel | None = None,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    data = data or BookingCancel()
    result = manager.cancel(
        booking_id,
        reason=data.reason,
        refund_override=data.refund_amount,
        notes=data.notes,
    )
    return CancellationResponse(
        booking=BookingRead.model_validate(manager.get(booking_id)),
        refund=RefundRead.model_validate(result.refund),
        refund_recorded=result.refund_recorded,
        errors=result.errors,
    )
