# backend/courtbook/services/slot_claims.py
"""
Durable uniqueness guard for booked slots.

Every live booked slot (confirmed, or scheduled with an unexpired hold)
owns one `slot_claims` row per claim bucket it covers. The unique
constraint on (court_id, bucket_start) makes the database reject the
second of two concurrent reservations for overlapping intervals, which
the check-then-write sequence against the cache cannot do on its own.

Claims of holds that lapsed without a sweep are reclaimed lazily inside
the transaction that wants the time.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from ..models import BookedSlots, SlotClaims, SlotStatus
from ..timezones import ensure_utc

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60  # buckets are aligned to the UTC hour grid


def claim_buckets(start: datetime, end: datetime, bucket_minutes: int) -> list[datetime]:
    """
    Bucket starts covering [start, end).

    Start is floored to the bucket grid; buckets are emitted while < end.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if bucket_minutes <= 0 or MINUTES_PER_HOUR % bucket_minutes:
        raise ValueError(f"bucket_minutes must divide an hour, got {bucket_minutes}")

    floored_minute = start.minute - start.minute % bucket_minutes
    bucket = start.replace(minute=floored_minute, second=0, microsecond=0)
    step = timedelta(minutes=bucket_minutes)

    buckets = []
    while bucket < end:
        buckets.append(bucket)
        bucket += step
    return buckets


def is_aligned(value: datetime, bucket_minutes: int) -> bool:
    value = ensure_utc(value)
    return value.second == 0 and value.microsecond == 0 and value.minute % bucket_minutes == 0


class SlotClaimGuard:
    """Claims and releases (court, bucket) rows for booked slots."""

    def __init__(self, db: Session, bucket_minutes: int):
        self.db = db
        self.bucket_minutes = bucket_minutes

    def release_lapsed(
        self,
        court_id: int,
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> int:
        """
        Delete claims in [start, end) held by scheduled slots whose hold lapsed.

        The slots themselves stay `scheduled` for the sweeper to expire.
        """
        buckets = claim_buckets(start, end, self.bucket_minutes)
        lapsed_slot_ids = [
            row.id
            for row in (
                self.db.query(BookedSlots.id)
                .join(SlotClaims, SlotClaims.booked_slot_id == BookedSlots.id)
                .filter(
                    SlotClaims.court_id == court_id,
                    SlotClaims.bucket_start.in_(buckets),
                    BookedSlots.status == SlotStatus.SCHEDULED.value,
                    BookedSlots.expiry_at.isnot(None),
                    BookedSlots.expiry_at <= now,
                )
                .distinct()
                .all()
            )
        ]
        if not lapsed_slot_ids:
            return 0

        logger.info(
            "Reclaiming buckets of lapsed holds court=%s slots=%s",
            court_id,
            lapsed_slot_ids,
        )
        return self.release(lapsed_slot_ids)

    def claim(self, slot: BookedSlots) -> None:
        """
        Add claim rows for a flushed booked slot.

        The unique violation, if any, is raised on the next flush/commit as
        sqlalchemy.exc.IntegrityError; callers translate it to ConflictError.
        """
        for bucket in claim_buckets(slot.start_time, slot.end_time, self.bucket_minutes):
            self.db.add(SlotClaims(
                court_id=slot.court_id,
                bucket_start=bucket,
                booked_slot_id=slot.id,
            ))

    def has_claims(self, slot: BookedSlots) -> bool:
        expected = len(claim_buckets(slot.start_time, slot.end_time, self.bucket_minutes))
        held = (
            self.db.query(SlotClaims)
            .filter(SlotClaims.booked_slot_id == slot.id)
            .count()
        )
        return held == expected

    def ensure_claimed(self, slot: BookedSlots, now: datetime) -> None:
        """Re-claim the buckets of a slot whose claims were reclaimed by others."""
        if self.has_claims(slot):
            return
        self.release([slot.id])
        self.release_lapsed(slot.court_id, slot.start_time, slot.end_time, now)
        self.claim(slot)

    def release(self, slot_ids: Iterable[int]) -> int:
        slot_ids = list(slot_ids)
        if not slot_ids:
            return 0
        return (
            self.db.query(SlotClaims)
            .filter(SlotClaims.booked_slot_id.in_(slot_ids))
            .delete(synchronize_session=False)
        )
