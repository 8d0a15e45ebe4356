# backend/courtbook/services/slots/invalidator.py
"""
Cache invalidation and rebuild for venue slot partitions.

The cache is derived from booked_slots, so a venue's days can always be
dropped and rebuilt from the durable store:

    confirmed slot                        → confirmed partition
    scheduled slot with an unexpired hold → reserved partition (remaining TTL)

Triggers:
✓ Admin rebuild after a cache flush or outage
✓ Venue timezone / hours changed → drop affected dates
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from ...errors import DependencyError, NotFoundError
from ...models import BookedSlots, Courts, SlotStatus, Venues
from ...timezones import ensure_utc, get_timezone, local_datetime, to_local, utc_now
from .redis_store import CachedSlot, SlotsRedisStore

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    venue_id: int
    dates: list[date]
    deleted_keys: int = 0
    confirmed: int = 0
    reserved: int = 0
    errors: list[str] = field(default_factory=list)


def invalidate_venue_cache(
    store: SlotsRedisStore,
    venue_id: int,
    dates: list[date],
) -> int:
    """
    Drop both partitions of a venue for the given dates.

    Returns:
        Number of deleted cache keys
    """
    return store.delete_days(venue_id, dates)


def get_affected_dates(date_start: date, date_end: date) -> list[date]:
    """Dates in [date_start, date_end], in either argument order."""
    if date_start > date_end:
        date_start, date_end = date_end, date_start

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current)
        current += timedelta(days=1)
    return dates


def slot_to_cache_entry(slot: BookedSlots) -> CachedSlot:
    return CachedSlot(
        court_id=slot.court_id,
        start_time=slot.start_time,
        end_time=slot.end_time,
        booking_id=slot.booking_id,
        slot_id=slot.id,
        expires_at=slot.expiry_at,
    )


def rebuild_venue_cache(
    db: Session,
    store: SlotsRedisStore,
    venue_id: int,
    dates: list[date],
    clock: Callable[[], datetime] = utc_now,
) -> RebuildReport:
    """
    Replace a venue's cached days with the durable view.

    Raises:
        NotFoundError: venue does not exist
        DependencyError: the cache could not be cleared
    """
    venue = db.get(Venues, venue_id)
    if venue is None:
        raise NotFoundError(f"Venue {venue_id} not found", details={"venue_id": venue_id})

    report = RebuildReport(venue_id=venue_id, dates=sorted(set(dates)))
    if not report.dates:
        return report

    tz = get_timezone(venue.timezone, store.config.default_timezone)
    now = clock()
    window_start = local_datetime(report.dates[0], 0, tz)
    window_end = local_datetime(report.dates[-1] + timedelta(days=1), 0, tz)

    report.deleted_keys = invalidate_venue_cache(store, venue_id, report.dates)

    slots = (
        db.query(BookedSlots)
        .join(Courts, Courts.id == BookedSlots.court_id)
        .filter(
            Courts.venue_id == venue_id,
            BookedSlots.start_time >= window_start,
            BookedSlots.start_time < window_end,
            BookedSlots.status.in_([SlotStatus.CONFIRMED.value, SlotStatus.SCHEDULED.value]),
        )
        .order_by(BookedSlots.start_time)
        .all()
    )

    wanted = set(report.dates)
    for slot in slots:
        slot_date = to_local(slot.start_time, tz).date()
        if slot_date not in wanted:
            continue

        entry = slot_to_cache_entry(slot)
        if slot.status == SlotStatus.CONFIRMED.value:
            if _put(report, lambda: store.put_confirmed(venue_id, slot_date, entry, venue.timezone)):
                report.confirmed += 1
            continue

        if slot.expiry_at is None or ensure_utc(slot.expiry_at) <= now:
            continue
        remaining = int((ensure_utc(slot.expiry_at) - now).total_seconds())
        if _put(report, lambda: store.put_reserved(venue_id, slot_date, entry, remaining)):
            report.reserved += 1

    logger.info(
        "Rebuilt slot cache venue=%s dates=%s..%s confirmed=%s reserved=%s errors=%s",
        venue_id,
        report.dates[0],
        report.dates[-1],
        report.confirmed,
        report.reserved,
        len(report.errors),
    )
    return report


def _put(report: RebuildReport, write: Callable[[], None]) -> bool:
    try:
        write()
    except DependencyError as exc:
        logger.warning("Cache rebuild write failed: %s", exc)
        report.errors.append(exc.message)
        return False
    return True
