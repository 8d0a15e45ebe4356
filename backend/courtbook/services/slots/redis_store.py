# backend/courtbook/services/slots/redis_store.py
"""
Redis storage for held and booked slots using Hashes.

Key format:
    confirmed:{venue_id}:{date}   durable bookings, expire-at next local midnight
    reserved:{venue_id}:{date}    payment-window holds, expire-after hold TTL

Field: "{court_id}:{start_iso}:{end_iso}"
Value: canonical JSON record (see CachedSlot.to_json).

The cache is a derived index over booked_slots. It is never the only
source of truth: every read parses defensively and treats malformed
entries as absent, and every Redis failure surfaces as DependencyError
so callers can decide whether to degrade or abort.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator

from redis import Redis
from redis.exceptions import RedisError

from ...errors import DependencyError
from ...timezones import ensure_utc, get_timezone, start_of_next_day, utc_now
from .calculator import Interval, overlaps
from .config import BookingConfig, get_booking_config

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
RESERVED = "reserved"
PARTITIONS = (CONFIRMED, RESERVED)


@dataclass(frozen=True)
class CachedSlot:
    court_id: int
    start_time: datetime
    end_time: datetime
    booking_id: int
    slot_id: int
    status: str = CONFIRMED
    created_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def hash_field(self) -> str:
        return slot_field(self.court_id, self.start_time, self.end_time)

    def to_json(self) -> str:
        return json.dumps({
            "court_id": self.court_id,
            "start_time": ensure_utc(self.start_time).isoformat(),
            "end_time": ensure_utc(self.end_time).isoformat(),
            "booking_id": self.booking_id,
            "slot_id": self.slot_id,
            "status": self.status,
            "created_at": ensure_utc(self.created_at).isoformat() if self.created_at else None,
            "expires_at": ensure_utc(self.expires_at).isoformat() if self.expires_at else None,
        })

    @classmethod
    def from_json(cls, raw) -> "CachedSlot | None":
        """Parse a stored record; anything malformed is treated as absent."""
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            data = json.loads(raw)
            created_at = data.get("created_at")
            expires_at = data.get("expires_at")
            return cls(
                court_id=int(data["court_id"]),
                start_time=ensure_utc(datetime.fromisoformat(data["start_time"])),
                end_time=ensure_utc(datetime.fromisoformat(data["end_time"])),
                booking_id=int(data["booking_id"]),
                slot_id=int(data["slot_id"]),
                status=data.get("status") or CONFIRMED,
                created_at=ensure_utc(datetime.fromisoformat(created_at)) if created_at else None,
                expires_at=ensure_utc(datetime.fromisoformat(expires_at)) if expires_at else None,
            )
        except (TypeError, ValueError, KeyError, AttributeError):
            logger.warning("Ignoring malformed slot cache entry: %r", raw)
            return None

    def is_lapsed(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class CachedDaySlots:
    """Both partitions for one (venue, date)."""
    confirmed: list[CachedSlot] = field(default_factory=list)
    reserved: list[CachedSlot] = field(default_factory=list)

    @property
    def merged(self) -> list[CachedSlot]:
        return [*self.confirmed, *self.reserved]

    def occupied(self, court_id: int) -> list[Interval]:
        return [
            (slot.start_time, slot.end_time)
            for slot in self.merged
            if slot.court_id == court_id
        ]


def slot_field(court_id: int, start: datetime, end: datetime) -> str:
    return f"{court_id}:{ensure_utc(start).isoformat()}:{ensure_utc(end).isoformat()}"


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise DependencyError(
            f"Slot cache {operation} failed: {exc}",
            details={"operation": operation},
        ) from exc


class SlotsRedisStore:
    """Dual-state (confirmed / reserved) slot cache over Redis hashes."""

    def __init__(
        self,
        redis: Redis,
        config: BookingConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.redis = redis
        self.config = config or get_booking_config()
        self.clock = clock

    def _key(self, partition: str, venue_id: int, dt: date) -> str:
        if partition not in PARTITIONS:
            raise ValueError(f"Unknown slot cache partition: {partition}")
        return f"{partition}:{venue_id}:{dt.isoformat()}"

    # ── Write ────────────────────────────────────────────────────────────

    def put_confirmed(
        self,
        venue_id: int,
        dt: date,
        slot: CachedSlot,
        timezone: str | None = None,
    ) -> None:
        """
        Upsert a confirmed slot.

        The hash expires at the start of the day after `dt` in the venue
        timezone. This is cleanup only; the durable store stays authoritative.
        """
        key = self._key(CONFIRMED, venue_id, dt)
        tz = get_timezone(timezone, self.config.default_timezone)
        expire_at = start_of_next_day(dt, tz)
        record = CachedSlot(
            court_id=slot.court_id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            booking_id=slot.booking_id,
            slot_id=slot.slot_id,
            status=CONFIRMED,
            created_at=slot.created_at or self.clock(),
        )

        with _redis_errors("put_confirmed"):
            pipe = self.redis.pipeline()
            pipe.hset(key, mapping={record.hash_field: record.to_json()})
            pipe.expireat(key, int(expire_at.timestamp()))
            pipe.execute()

    def put_reserved(
        self,
        venue_id: int,
        dt: date,
        slot: CachedSlot,
        ttl_seconds: int | None = None,
    ) -> None:
        """
        Upsert a reserved (held) slot.

        The whole hash gets the hold TTL. Each record also carries its own
        expires_at so a hold reads as absent once lapsed even when a later
        hold on the same day pushed the hash expiry further out.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.config.hold_seconds
        now = self.clock()
        key = self._key(RESERVED, venue_id, dt)
        record = CachedSlot(
            court_id=slot.court_id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            booking_id=slot.booking_id,
            slot_id=slot.slot_id,
            status=RESERVED,
            created_at=now,
            expires_at=slot.expires_at or now + timedelta(seconds=ttl),
        )

        with _redis_errors("put_reserved"):
            # never shorten the hash TTL below a longer hold already in it
            current_ttl = self.redis.ttl(key)
            pipe = self.redis.pipeline()
            pipe.hset(key, mapping={record.hash_field: record.to_json()})
            pipe.expire(key, max(int(ttl), current_ttl or 0, 1))
            pipe.execute()

    # ── Read ─────────────────────────────────────────────────────────────

    def _parse_partition(self, raw: dict | None, now: datetime) -> list[CachedSlot]:
        slots = []
        for value in (raw or {}).values():
            slot = CachedSlot.from_json(value)
            if slot is None or slot.is_lapsed(now):
                continue
            slots.append(slot)
        return slots

    def query_all(self, venue_id: int, dt: date) -> CachedDaySlots:
        """Get confirmed and live reserved slots for a (venue, date)."""
        return self.query_many([(venue_id, dt)])[(venue_id, dt)]

    def query_many(
        self,
        pairs: Iterable[tuple[int, date]],
    ) -> dict[tuple[int, date], CachedDaySlots]:
        """
        Batch read both partitions for many (venue, date) pairs.

        One pipeline round-trip regardless of the number of pairs.
        """
        pairs = list(dict.fromkeys(pairs))
        if not pairs:
            return {}

        with _redis_errors("query"):
            pipe = self.redis.pipeline()
            for venue_id, dt in pairs:
                pipe.hgetall(self._key(CONFIRMED, venue_id, dt))
                pipe.hgetall(self._key(RESERVED, venue_id, dt))
            raw_results = pipe.execute()

        now = self.clock()
        result = {}
        for index, pair in enumerate(pairs):
            result[pair] = CachedDaySlots(
                confirmed=self._parse_partition(raw_results[2 * index], now),
                reserved=self._parse_partition(raw_results[2 * index + 1], now),
            )
        return result

    def is_available(
        self,
        venue_id: int,
        dt: date,
        court_id: int,
        start: datetime,
        end: datetime,
    ) -> bool:
        """True iff no confirmed or live reserved entry for the court overlaps."""
        day = self.query_all(venue_id, dt)
        return not any(
            overlaps(start, end, o_start, o_end)
            for o_start, o_end in day.occupied(court_id)
        )

    def get_booking_slots(
        self,
        venue_id: int,
        dt: date,
        booking_id: int,
    ) -> list[CachedSlot]:
        day = self.query_all(venue_id, dt)
        return [slot for slot in day.merged if slot.booking_id == booking_id]

    # ── Delete ───────────────────────────────────────────────────────────

    def remove(
        self,
        partition: str,
        venue_id: int,
        dt: date,
        court_id: int,
        start: datetime,
        end: datetime,
    ) -> int:
        """Remove one entry. Returns number of removed fields."""
        key = self._key(partition, venue_id, dt)
        with _redis_errors("remove"):
            return self.redis.hdel(key, slot_field(court_id, start, end))

    def remove_all_for_booking(
        self,
        venue_id: int,
        dt: date,
        booking_id: int,
        partitions: Iterable[str] = PARTITIONS,
    ) -> int:
        """
        Remove every entry of a booking for a (venue, date).

        Malformed entries are left alone; they are already invisible to readers
        and expire with their hash.
        """
        removed = 0
        with _redis_errors("remove_all_for_booking"):
            for partition in partitions:
                key = self._key(partition, venue_id, dt)
                raw = self.redis.hgetall(key) or {}
                fields = []
                for name, value in raw.items():
                    slot = CachedSlot.from_json(value)
                    if slot is not None and slot.booking_id == booking_id:
                        fields.append(name)
                if fields:
                    removed += self.redis.hdel(key, *fields)
        return removed

    def delete_days(self, venue_id: int, dates: Iterable[date]) -> int:
        """Drop both partitions for the given dates. Returns deleted key count."""
        keys = [
            self._key(partition, venue_id, dt)
            for dt in dates
            for partition in PARTITIONS
        ]
        if not keys:
            return 0
        with _redis_errors("delete_days"):
            return self.redis.delete(*keys)
