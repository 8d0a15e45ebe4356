# backend/courtbook/services/reservations.py
"""
Reservation lifecycle: create (pending + holds), confirm, cancel.

The durable store is always written first and is the only source of the
caller-visible result. Cache writes that follow a commit are best effort:
failures are logged and returned as `cache_errors`, never raised.

Booked slot states:

    scheduled (hold) ──confirm──▶ confirmed
          │                          │
          ├──sweep──▶ expired        └──cancel──▶ cancelled
          └──cancel─▶ cancelled
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    StateError,
    ValidationError,
)
from ..models import (
    ACTIVE,
    BookedSlots,
    Bookings,
    BookingStatus,
    BookingType,
    Courts,
    Payments,
    SlotStatus,
)
from ..timezones import ensure_utc, get_timezone, minutes_since_midnight, to_local, utc_now
from .recurrence import RecurrenceSpec, expand_occurrences
from .refund_policy import RefundQuote, calculate_refund
from .slot_claims import SlotClaimGuard, is_aligned
from .slots.config import BookingConfig, get_booking_config, time_str_to_minutes
from .slots.pricing import PriceRuleEvaluator
from .slots.redis_store import RESERVED, CachedSlot, SlotsRedisStore

logger = logging.getLogger(__name__)

NOT_CONFIRMABLE = {
    BookingStatus.CONFIRMED.value,
    BookingStatus.CANCELLED.value,
    BookingStatus.COMPLETED.value,
    BookingStatus.EXPIRED.value,
}
NOT_CANCELLABLE = {
    BookingStatus.CANCELLED.value,
    BookingStatus.COMPLETED.value,
}


@dataclass
class ReservationRequest:
    court_id: int
    start_time: datetime
    end_time: datetime
    user_id: Optional[int] = None
    recurrence: Optional[RecurrenceSpec] = None
    notes: Optional[str] = None
    payment_reference: Optional[str] = None
    annotations: Optional[dict[str, Any]] = None


@dataclass
class ReservationResult:
    booking: Bookings
    cache_errors: list[str] = field(default_factory=list)


@dataclass
class CancellationResult:
    booking: Bookings
    refund: RefundQuote
    refund_recorded: bool = False
    errors: list[str] = field(default_factory=list)


def _interval_details(intervals) -> list[dict[str, str]]:
    return [
        {"start_time": ensure_utc(s).isoformat(), "end_time": ensure_utc(e).isoformat()}
        for s, e in intervals
    ]


class ReservationManager:
    """Creates, confirms and cancels bookings over the durable store and the slot cache."""

    def __init__(
        self,
        db: Session,
        store: SlotsRedisStore,
        config: BookingConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.store = store
        self.config = config or get_booking_config()
        self.clock = clock
        self.pricing = PriceRuleEvaluator(db)
        self.claims = SlotClaimGuard(db, self.config.claim_bucket_minutes)

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, booking_id: int) -> Bookings:
        booking = (
            self.db.query(Bookings)
            .options(selectinload(Bookings.booked_slots), selectinload(Bookings.venue))
            .filter(Bookings.id == booking_id)
            .first()
        )
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
        return booking

    # ── Create ───────────────────────────────────────────────────────────

    def create(self, request: ReservationRequest) -> ReservationResult:
        """
        Create a pending booking holding one slot per occurrence.

        Raises:
            ValidationError: bad interval, past start, misaligned, outside hours
            NotFoundError: court or its venue missing or inactive
            DependencyError: cache unreachable, so the time cannot be confirmed free
            ConflictError: time already held or booked
            NoPricingCoverage: an occurrence has no price
        """
        now = self.clock()
        start = ensure_utc(request.start_time)
        end = ensure_utc(request.end_time)
        self._validate_interval(start, end, now)

        court = self._get_active_court(request.court_id)
        venue = court.venue
        tz = get_timezone(venue.timezone, self.config.default_timezone)

        if request.recurrence is not None:
            occurrences = expand_occurrences(
                start, end, request.recurrence, tz, self.config.recurring_max_occurrences
            )
        else:
            occurrences = [(start, end)]

        for occ_start, occ_end in occurrences:
            self._check_operating_hours(venue, tz, occ_start, occ_end)

        self._check_conflicts(court, tz, occurrences, now)
        quotes = [self.pricing.quote(court.id, s, e, tz) for s, e in occurrences]

        expiry_at = now + timedelta(minutes=self.config.hold_minutes)
        is_recurring = request.recurrence is not None
        booking = Bookings(
            venue_id=venue.id,
            court_id=court.id,
            user_id=request.user_id,
            start_time=occurrences[0][0],
            end_time=occurrences[0][1],
            status=BookingStatus.PENDING.value,
            booking_type=(BookingType.RECURRING if is_recurring else BookingType.SINGLE).value,
            total_amount=sum(q.amount for q in quotes),
            recurrence_id=uuid.uuid4().hex if is_recurring else None,
            recurrence_config=request.recurrence.to_dict() if is_recurring else None,
            notes=request.notes,
            payment_reference=request.payment_reference,
            annotations=request.annotations,
            created_at=now,
            updated_at=now,
        )

        try:
            for occ_start, occ_end in occurrences:
                self.claims.release_lapsed(court.id, occ_start, occ_end, now)

            self.db.add(booking)
            slots = []
            for index, ((occ_start, occ_end), quote) in enumerate(zip(occurrences, quotes)):
                slot = BookedSlots(
                    booking=booking,
                    court_id=court.id,
                    start_time=occ_start,
                    end_time=occ_end,
                    status=SlotStatus.SCHEDULED.value,
                    price=quote.amount,
                    expiry_at=expiry_at,
                    occurrence_index=index,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(slot)
                slots.append(slot)
            self.db.flush()

            for slot in slots:
                self.claims.claim(slot)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Reservation lost claim race court=%s start=%s", court.id, start)
            raise ConflictError(
                "Selected time slot is no longer available",
                details={"court_id": court.id, "conflicts": _interval_details(occurrences)},
            ) from exc

        logger.info(
            "Created pending booking id=%s court=%s occurrences=%s total=%s hold_until=%s",
            booking.id,
            court.id,
            len(slots),
            booking.total_amount,
            expiry_at.isoformat(),
        )

        cache_errors = []
        for slot in slots:
            entry = CachedSlot(
                court_id=slot.court_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                booking_id=booking.id,
                slot_id=slot.id,
                expires_at=expiry_at,
            )
            try:
                self.store.put_reserved(
                    venue.id,
                    to_local(slot.start_time, tz).date(),
                    entry,
                    self.config.hold_seconds,
                )
            except DependencyError as exc:
                logger.warning("Failed to cache hold booking=%s slot=%s: %s", booking.id, slot.id, exc)
                cache_errors.append(exc.message)

        return ReservationResult(booking=booking, cache_errors=cache_errors)

    def _validate_interval(self, start: datetime, end: datetime, now: datetime) -> None:
        if start >= end:
            raise ValidationError(
                "start_time must be before end_time",
                code="invalid_interval",
                details=_interval_details([(start, end)])[0],
            )
        if start <= now:
            raise ValidationError(
                "Cannot book a time in the past",
                code="start_in_past",
                details={"start_time": start.isoformat()},
            )
        bucket = self.config.claim_bucket_minutes
        if not (is_aligned(start, bucket) and is_aligned(end, bucket)):
            raise ValidationError(
                f"Booking times must align to {bucket} minute boundaries",
                code="misaligned_interval",
                details=_interval_details([(start, end)])[0],
            )

    def _get_active_court(self, court_id: int) -> Courts:
        court = (
            self.db.query(Courts)
            .options(selectinload(Courts.venue))
            .filter(Courts.id == court_id)
            .first()
        )
        if court is None or court.status != ACTIVE or court.venue.status != ACTIVE:
            raise NotFoundError(
                f"Court {court_id} not found or not active",
                details={"court_id": court_id},
            )
        return court

    def _check_operating_hours(self, venue, tz, start: datetime, end: datetime) -> None:
        opening = time_str_to_minutes(venue.opening_time or self.config.default_opening_time)
        closing = time_str_to_minutes(venue.closing_time or self.config.default_closing_time)

        local_start = to_local(start, tz)
        start_min = minutes_since_midnight(local_start)
        end_min = start_min + int((end - start).total_seconds() // 60)

        if start_min < opening or end_min > closing:
            raise ValidationError(
                "Booking is outside venue operating hours",
                code="outside_operating_hours",
                details={
                    "opening_time": venue.opening_time or self.config.default_opening_time,
                    "closing_time": venue.closing_time or self.config.default_closing_time,
                    "local_start": local_start.isoformat(),
                },
            )

    def _check_conflicts(
        self,
        court: Courts,
        tz,
        occurrences: list[tuple[datetime, datetime]],
        now: datetime,
    ) -> None:
        """
        Cache fast path, then the durable store.

        A cache failure propagates as DependencyError: without the cache the
        time cannot be confirmed free on this path.
        """
        conflicts = []
        for occ_start, occ_end in occurrences:
            local_date = to_local(occ_start, tz).date()
            if not self.store.is_available(court.venue_id, local_date, court.id, occ_start, occ_end):
                conflicts.append((occ_start, occ_end))

        overlap = or_(*[
            and_(BookedSlots.start_time < occ_end, BookedSlots.end_time > occ_start)
            for occ_start, occ_end in occurrences
        ])
        rows = (
            self.db.query(BookedSlots.start_time, BookedSlots.end_time)
            .filter(
                BookedSlots.court_id == court.id,
                overlap,
                or_(
                    BookedSlots.status == SlotStatus.CONFIRMED.value,
                    and_(
                        BookedSlots.status == SlotStatus.SCHEDULED.value,
                        BookedSlots.expiry_at > now,
                    ),
                ),
            )
            .all()
        )
        conflicts.extend((row.start_time, row.end_time) for row in rows)

        if conflicts:
            raise ConflictError(
                "Selected time slot is not available",
                details={
                    "court_id": court.id,
                    "conflicts": _interval_details(sorted(set(
                        (ensure_utc(s), ensure_utc(e)) for s, e in conflicts
                    ))),
                },
            )

    # ── Confirm ──────────────────────────────────────────────────────────

    def confirm(
        self,
        booking_id: int,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReservationResult:
        """
        Promote a pending booking and its holds to confirmed.

        Raises:
            NotFoundError, StateError, ValidationError (already started),
            ConflictError (a lapsed hold's time was taken by someone else)
        """
        booking = self.get(booking_id)
        now = self.clock()

        if booking.status in NOT_CONFIRMABLE:
            raise StateError(
                f"Booking cannot be confirmed from status {booking.status}",
                details={"booking_id": booking.id, "status": booking.status},
            )
        if ensure_utc(booking.start_time) <= now:
            raise ValidationError(
                "Booking has already started",
                code="booking_started",
                details={"booking_id": booking.id, "start_time": ensure_utc(booking.start_time).isoformat()},
            )

        slots = [s for s in booking.booked_slots if s.status == SlotStatus.SCHEDULED.value]
        try:
            for slot in slots:
                if slot.expiry_at is not None and ensure_utc(slot.expiry_at) <= now:
                    self.claims.ensure_claimed(slot, now)
                slot.status = SlotStatus.CONFIRMED.value
                slot.expiry_at = None
                slot.updated_at = now

            booking.status = BookingStatus.CONFIRMED.value
            booking.confirmed_at = now
            booking.updated_at = now
            if payment_reference:
                booking.payment_reference = payment_reference
            if notes:
                booking.notes = notes
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(
                "Hold lapsed and the time slot was taken by another booking",
                details={"booking_id": booking_id},
            ) from exc

        logger.info("Confirmed booking id=%s slots=%s", booking.id, len(slots))

        tz = get_timezone(booking.venue.timezone, self.config.default_timezone)
        cache_errors = []
        for local_date in self._slot_dates(slots, tz):
            try:
                self.store.remove_all_for_booking(booking.venue_id, local_date, booking.id, partitions=(RESERVED,))
            except DependencyError as exc:
                logger.warning("Failed to drop holds booking=%s date=%s: %s", booking.id, local_date, exc)
                cache_errors.append(exc.message)

        for slot in slots:
            entry = CachedSlot(
                court_id=slot.court_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                booking_id=booking.id,
                slot_id=slot.id,
                created_at=now,
            )
            try:
                self.store.put_confirmed(
                    booking.venue_id,
                    to_local(slot.start_time, tz).date(),
                    entry,
                    booking.venue.timezone,
                )
            except DependencyError as exc:
                logger.warning("Failed to cache confirmed slot booking=%s slot=%s: %s", booking.id, slot.id, exc)
                cache_errors.append(exc.message)

        return ReservationResult(booking=booking, cache_errors=cache_errors)

    # ── Cancel ───────────────────────────────────────────────────────────

    def cancel(
        self,
        booking_id: int,
        reason: Optional[str] = None,
        refund_override: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> CancellationResult:
        booking = self.get(booking_id)
        now = self.clock()

        if booking.status in NOT_CANCELLABLE:
            raise StateError(
                f"Booking cannot be cancelled from status {booking.status}",
                details={"booking_id": booking.id, "status": booking.status},
            )

        refund = calculate_refund(booking.start_time, booking.total_amount, refund_override, now)

        booking.status = BookingStatus.CANCELLED.value
        booking.cancellation_reason = reason
        booking.cancelled_at = now
        booking.refund_amount = refund.amount
        booking.updated_at = now
        if notes:
            booking.notes = notes

        slots = list(booking.booked_slots)
        for slot in slots:
            if slot.status in (SlotStatus.SCHEDULED.value, SlotStatus.CONFIRMED.value):
                slot.status = SlotStatus.CANCELLED.value
                slot.expiry_at = None
                slot.updated_at = now
        self.claims.release(slot.id for slot in slots)
        self.db.commit()

        logger.info(
            "Cancelled booking id=%s refund=%s (%s%%, %sh before start)",
            booking.id,
            refund.amount,
            refund.percentage,
            refund.hours_before_start,
        )

        result = CancellationResult(booking=booking, refund=refund)
        tz = get_timezone(booking.venue.timezone, self.config.default_timezone)
        for local_date in self._slot_dates(slots, tz):
            try:
                self.store.remove_all_for_booking(booking.venue_id, local_date, booking.id)
            except DependencyError as exc:
                logger.warning("Failed to drop cache entries booking=%s date=%s: %s", booking.id, local_date, exc)
                result.errors.append(exc.message)

        if refund.amount > 0:
            result.refund_recorded = self._record_refund(booking, refund, reason, result.errors)
        return result

    def _record_refund(
        self,
        booking: Bookings,
        refund: RefundQuote,
        reason: Optional[str],
        errors: list[str],
    ) -> bool:
        try:
            self.db.add(Payments(
                booking_id=booking.id,
                amount=-refund.amount,
                payment_method="refund",
                status="pending",
                reason=reason,
                original_amount=booking.total_amount,
                created_at=self.clock(),
            ))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to record refund for booking id=%s", booking.id)
            errors.append(f"Refund recording failed: {exc}")
            return False
        return True

    @staticmethod
    def _slot_dates(slots: list[BookedSlots], tz) -> list[date]:
        return sorted({to_local(slot.start_time, tz).date() for slot in slots})
