# backend/courtbook/services/expiry_sweeper.py
"""
Expiry sweeper.

Finds scheduled booked slots whose hold lapsed without confirmation and
voids them:

1. scheduled slots with expiry_at < now (none → zero report)
2. slots → expired, their slot claims released
3. owning bookings → expired, only while still pending
4. reserved cache entries of swept slots removed (best effort)
5. cache repair (best effort): live holds and upcoming confirmed slots
   missing from the cache are written back, covering cache writes that
   failed after a reservation or confirmation committed

Steps 2 and 3 are conditional updates: a slot or booking confirmed by a
concurrent request after step 1 read it is left untouched.

Re-running with nothing newly lapsed changes nothing durable.

Can be invoked by an external scheduler (scripts/sweep_expired.py,
POST /internal/sweep-expired) or by the optional in-process loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..errors import DependencyError
from ..models import BookedSlots, Bookings, BookingStatus, SlotStatus
from ..timezones import ensure_utc, get_timezone, to_local, utc_now
from .slot_claims import SlotClaimGuard
from .slots.config import BookingConfig, get_booking_config
from .slots.redis_store import RESERVED, CachedSlot, SlotsRedisStore

logger = logging.getLogger(__name__)

EXPIRED_REASON = "payment_timeout"


@dataclass
class SweepReport:
    processed_at: datetime
    expired_slot_count: int = 0
    expired_booking_count: int = 0
    processed_booking_ids: list[int] = field(default_factory=list)
    restored_hold_count: int = 0
    restored_confirmed_count: int = 0
    errors: list[str] = field(default_factory=list)


class ExpirySweeper:
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
        self.claims = SlotClaimGuard(db, self.config.claim_bucket_minutes)

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Void lapsed holds, then repair the cache.

        Raises:
            DependencyError: the durable store could not be updated
        """
        now = ensure_utc(now or self.clock())
        report = SweepReport(processed_at=now)

        slots = (
            self.db.query(BookedSlots)
            .options(selectinload(BookedSlots.booking).selectinload(Bookings.venue))
            .filter(
                BookedSlots.status == SlotStatus.SCHEDULED.value,
                BookedSlots.expiry_at.isnot(None),
                BookedSlots.expiry_at < now,
            )
            .order_by(BookedSlots.id)
            .all()
        )

        if slots:
            expired = self._expire(slots, now, report)
            self._purge_cache(expired, report)

        self._repair_cache(now, report)

        if slots or report.errors or report.restored_hold_count or report.restored_confirmed_count:
            logger.info(
                "Expiry sweep: slots=%s bookings=%s restored_holds=%s restored_confirmed=%s errors=%s",
                report.expired_slot_count,
                report.expired_booking_count,
                report.restored_hold_count,
                report.restored_confirmed_count,
                len(report.errors),
            )
        return report

    def _expire(self, slots: list[BookedSlots], now: datetime, report: SweepReport) -> list[BookedSlots]:
        """Expire the slots still scheduled and lapsed. Returns the ones changed."""
        expired: list[BookedSlots] = []
        booking_ids: list[int] = []
        try:
            for slot in slots:
                result = self.db.execute(
                    update(BookedSlots)
                    .where(
                        BookedSlots.id == slot.id,
                        BookedSlots.status == SlotStatus.SCHEDULED.value,
                        BookedSlots.expiry_at < now,
                    )
                    .values(status=SlotStatus.EXPIRED.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    expired.append(slot)
                else:
                    logger.info("Slot id=%s changed since it was read, not expiring", slot.id)

            self.claims.release(slot.id for slot in expired)

            for booking_id in sorted({slot.booking_id for slot in expired}):
                result = self.db.execute(
                    update(Bookings)
                    .where(
                        Bookings.id == booking_id,
                        Bookings.status == BookingStatus.PENDING.value,
                    )
                    .values(
                        status=BookingStatus.EXPIRED.value,
                        expired_at=now,
                        expired_reason=EXPIRED_REASON,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    booking_ids.append(booking_id)

            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Expiry sweep failed to update booked slots")
            raise DependencyError(f"Failed to expire booked slots: {exc}") from exc

        # in-memory copies predate the bulk updates
        for slot in slots:
            self.db.expire(slot.booking)
            self.db.expire(slot)

        report.expired_slot_count = len(expired)
        report.expired_booking_count = len(booking_ids)
        report.processed_booking_ids = booking_ids
        return expired

    def _purge_cache(self, slots: list[BookedSlots], report: SweepReport) -> None:
        for slot in slots:
            venue = slot.booking.venue
            tz = get_timezone(venue.timezone, self.config.default_timezone)
            try:
                self.store.remove(
                    RESERVED,
                    venue.id,
                    to_local(slot.start_time, tz).date(),
                    slot.court_id,
                    slot.start_time,
                    slot.end_time,
                )
            except DependencyError as exc:
                logger.warning("Failed to purge expired hold slot=%s: %s", slot.id, exc)
                report.errors.append(f"Cache cleanup failed for slot {slot.id}: {exc.message}")

    def _repair_cache(self, now: datetime, report: SweepReport) -> None:
        horizon = now + timedelta(days=self.config.cache_repair_days)
        live = (
            self.db.query(BookedSlots)
            .options(selectinload(BookedSlots.booking).selectinload(Bookings.venue))
            .filter(or_(
                and_(
                    BookedSlots.status == SlotStatus.SCHEDULED.value,
                    BookedSlots.expiry_at > now,
                ),
                and_(
                    BookedSlots.status == SlotStatus.CONFIRMED.value,
                    BookedSlots.end_time > now,
                    BookedSlots.start_time < horizon,
                ),
            ))
            .order_by(BookedSlots.id)
            .populate_existing()
            .all()
        )
        if not live:
            return

        by_day: dict[tuple[int, date], list[BookedSlots]] = {}
        for slot in live:
            venue = slot.booking.venue
            tz = get_timezone(venue.timezone, self.config.default_timezone)
            by_day.setdefault((venue.id, to_local(slot.start_time, tz).date()), []).append(slot)

        try:
            cached = self.store.query_many(by_day)
        except DependencyError as exc:
            logger.warning("Cache repair skipped: %s", exc)
            report.errors.append(f"Cache repair skipped: {exc.message}")
            return

        for (venue_id, local_date), day_slots in by_day.items():
            day = cached[(venue_id, local_date)]
            confirmed_ids = {entry.slot_id for entry in day.confirmed}
            reserved_ids = {entry.slot_id for entry in day.reserved}

            for slot in day_slots:
                try:
                    if slot.status == SlotStatus.CONFIRMED.value:
                        if slot.id not in confirmed_ids:
                            self._restore_confirmed(venue_id, local_date, slot)
                            report.restored_confirmed_count += 1
                    elif slot.id not in reserved_ids:
                        self._restore_hold(venue_id, local_date, slot, now)
                        report.restored_hold_count += 1
                except DependencyError as exc:
                    logger.warning("Failed to restore cache entry slot=%s: %s", slot.id, exc)
                    report.errors.append(f"Cache restore failed for slot {slot.id}: {exc.message}")

    def _restore_confirmed(self, venue_id: int, local_date: date, slot: BookedSlots) -> None:
        entry = CachedSlot(
            court_id=slot.court_id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            booking_id=slot.booking_id,
            slot_id=slot.id,
        )
        self.store.put_confirmed(venue_id, local_date, entry, slot.booking.venue.timezone)

    def _restore_hold(self, venue_id: int, local_date: date, slot: BookedSlots, now: datetime) -> None:
        expires_at = ensure_utc(slot.expiry_at)
        entry = CachedSlot(
            court_id=slot.court_id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            booking_id=slot.booking_id,
            slot_id=slot.id,
            expires_at=expires_at,
        )
        self.store.put_reserved(venue_id, local_date, entry, int((expires_at - now).total_seconds()))


def run_sweep(session_factory: sessionmaker, store: SlotsRedisStore) -> SweepReport:
    """Run one sweep in its own session."""
    db = session_factory()
    try:
        return ExpirySweeper(db, store, store.config, store.clock).sweep()
    finally:
        db.close()


async def expiry_sweeper_loop(
    session_factory: sessionmaker,
    store: SlotsRedisStore,
    interval_seconds: int,
) -> None:
    """
    Periodic in-process sweep.

    Runs as an asyncio task in the app lifespan when SWEEP_INTERVAL_SECONDS > 0.
    Uses the synchronous session and Redis client via asyncio.to_thread.
    """
    logger.info("expiry_sweeper_loop started (every %ss)", interval_seconds)

    try:
        while True:
            try:
                await asyncio.to_thread(run_sweep, session_factory, store)
            except asyncio.CancelledError:
                logger.info("expiry_sweeper_loop cancelled")
                raise
            except Exception:
                logger.exception("expiry_sweeper_loop error")

            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        pass
