# backend/courtbook/services/slots/availability.py
"""
Availability listing across venues, courts and dates.

Everything the listing needs is fetched up front, once:
- venues of the requested page with their active courts (one query)
- active price rules for every court × day-of-week in range (one query)
- both cache partitions for every (venue, date) pair (one pipeline)

Slots are then generated and priced in memory per (court, date).
If the cache is unreachable, occupancy is taken from active booked slots
in the durable store instead.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Sequence

from sqlalchemy.orm import Session, selectinload

from ...errors import DependencyError, ValidationError
from ...models import ACTIVE, BookedSlots, Courts, SlotStatus, Venues
from ...timezones import day_of_week, ensure_utc, get_timezone, local_today, to_local, utc_now
from .calculator import PricedSlot, calculate_day_slots
from .config import BookingConfig, get_booking_config
from .pricing import PriceRuleEvaluator, RuleIndex
from .redis_store import CachedDaySlots, CachedSlot, SlotsRedisStore

logger = logging.getLogger(__name__)


@dataclass
class CourtDaySlots:
    venue_id: int
    venue_name: str
    court_id: int
    court_name: str
    date: date
    timezone: str
    slots: list[PricedSlot] = field(default_factory=list)


@dataclass
class AvailabilityResult:
    slots: list[CourtDaySlots] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


@dataclass(frozen=True)
class VenueCourts:
    """A venue of the current page with its active courts."""
    id: int
    name: str
    timezone: str | None
    opening_time: str | None
    closing_time: str | None
    courts: tuple[Courts, ...]


@dataclass(frozen=True)
class AvailabilityQuery:
    date_from: date
    date_to: date
    duration_minutes: int
    venue_ids: tuple[int, ...] | None
    limit: int
    offset: int

    @property
    def dates(self) -> list[date]:
        days = (self.date_to - self.date_from).days
        return [self.date_from + timedelta(days=n) for n in range(days + 1)]


class AvailabilityService:
    """Finds bookable, priced slots for a page of venues."""

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

    # ── Input ────────────────────────────────────────────────────────────

    def build_query(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        duration: int | None = None,
        venue_ids: Sequence[int] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> AvailabilityQuery:
        """Apply defaults and validate. Raises ValidationError, never touches I/O."""
        config = self.config
        today = local_today(get_timezone(config.default_timezone), self.clock())

        date_from = date_from or today
        date_to = date_to or date_from + timedelta(days=config.lookahead_days)
        duration = duration if duration is not None else config.default_duration_minutes
        limit = limit if limit is not None else config.default_limit

        if duration not in config.allowed_durations:
            raise ValidationError(
                f"Duration must be one of {list(config.allowed_durations)} minutes",
                details={"duration": duration},
            )
        if date_to < date_from:
            raise ValidationError(
                "date_to must not be before date_from",
                details={"date_from": date_from.isoformat(), "date_to": date_to.isoformat()},
            )
        if (date_to - date_from).days > config.max_range_days:
            raise ValidationError(
                f"Date range cannot exceed {config.max_range_days} days",
                details={"days": (date_to - date_from).days},
            )
        if not 1 <= limit <= config.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {config.max_limit}",
                details={"limit": limit},
            )
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})

        return AvailabilityQuery(
            date_from=date_from,
            date_to=date_to,
            duration_minutes=duration,
            venue_ids=tuple(venue_ids) if venue_ids else None,
            limit=limit,
            offset=offset,
        )

    # ── Listing ──────────────────────────────────────────────────────────

    def find_available(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        duration: int | None = None,
        venue_ids: Sequence[int] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> AvailabilityResult:
        query = self.build_query(date_from, date_to, duration, venue_ids, limit, offset)
        try:
            return self._find(query)
        except Exception:
            logger.exception(
                "Availability lookup failed venues=%s %s..%s",
                query.venue_ids,
                query.date_from,
                query.date_to,
            )
            return AvailabilityResult()

    def _find(self, query: AvailabilityQuery) -> AvailabilityResult:
        venues = self._load_venues(query)
        if not venues:
            return AvailabilityResult()

        dates = query.dates
        court_ids = [court.id for venue in venues for court in venue.courts]
        rules = self.pricing.load_rules(court_ids, {day_of_week(d) for d in dates})
        occupancy = self._load_occupancy(venues, dates)

        now = self.clock()
        groups: list[CourtDaySlots] = []
        for venue in venues:
            groups.extend(self._venue_groups(venue, dates, rules, occupancy, now, query.duration_minutes))

        groups.sort(key=lambda g: (g.date, g.slots[0].start_time))
        page_size = query.limit
        if not query.venue_ids:
            page_size = min(query.limit, self.config.unfiltered_venue_cap)

        return AvailabilityResult(
            slots=groups,
            total=len(groups),
            has_more=len(venues) == page_size,
        )

    def _venue_groups(
        self,
        venue: VenueCourts,
        dates: list[date],
        rules: RuleIndex,
        occupancy: dict[tuple[int, date], CachedDaySlots],
        now: datetime,
        duration: int,
    ) -> list[CourtDaySlots]:
        tz = get_timezone(venue.timezone, self.config.default_timezone)
        today = local_today(tz, now)
        opening = venue.opening_time or self.config.default_opening_time
        closing = venue.closing_time or self.config.default_closing_time

        groups = []
        for target_date in dates:
            if target_date < today:
                continue
            day = occupancy.get((venue.id, target_date)) or CachedDaySlots()
            dow = day_of_week(target_date)
            for court in venue.courts:
                slots = calculate_day_slots(
                    target_date,
                    opening,
                    closing,
                    duration,
                    tz,
                    occupied=day.occupied(court.id),
                    rules=rules.get((court.id, dow), []),
                    now=now,
                )
                if slots:
                    groups.append(CourtDaySlots(
                        venue_id=venue.id,
                        venue_name=venue.name,
                        court_id=court.id,
                        court_name=court.name,
                        date=target_date,
                        timezone=tz.zone,
                        slots=slots,
                    ))
        return groups

    def _load_venues(self, query: AvailabilityQuery) -> list[VenueCourts]:
        q = (
            self.db.query(Venues)
            .filter(
                Venues.status == ACTIVE,
                Venues.courts.any(Courts.status == ACTIVE),
            )
            .options(selectinload(Venues.courts))
            .order_by(Venues.id)
        )
        limit = query.limit
        if query.venue_ids:
            q = q.filter(Venues.id.in_(query.venue_ids))
        else:
            limit = min(limit, self.config.unfiltered_venue_cap)

        return [
            VenueCourts(
                id=venue.id,
                name=venue.name,
                timezone=venue.timezone,
                opening_time=venue.opening_time,
                closing_time=venue.closing_time,
                courts=tuple(sorted(
                    (court for court in venue.courts if court.status == ACTIVE),
                    key=lambda c: c.id,
                )),
            )
            for venue in q.offset(query.offset).limit(limit).all()
        ]

    # ── Occupancy ────────────────────────────────────────────────────────

    def _load_occupancy(
        self,
        venues: list[VenueCourts],
        dates: list[date],
    ) -> dict[tuple[int, date], CachedDaySlots]:
        pairs = [(venue.id, d) for venue in venues for d in dates]
        try:
            return self.store.query_many(pairs)
        except DependencyError as exc:
            logger.warning("Slot cache unavailable, using booked slots for occupancy: %s", exc)
            return self._durable_occupancy(venues, dates)

    def _durable_occupancy(
        self,
        venues: list[VenueCourts],
        dates: list[date],
    ) -> dict[tuple[int, date], CachedDaySlots]:
        """Occupancy from confirmed and unexpired scheduled booked slots."""
        court_venue = {court.id: venue for venue in venues for court in venue.courts}
        if not court_venue or not dates:
            return {}

        now = self.clock()
        # Pad by a day on both sides to cover any venue timezone offset.
        window_start = datetime.combine(dates[0] - timedelta(days=1), datetime.min.time())
        window_end = datetime.combine(dates[-1] + timedelta(days=2), datetime.min.time())

        rows = (
            self.db.query(BookedSlots)
            .filter(
                BookedSlots.court_id.in_(list(court_venue)),
                BookedSlots.start_time < ensure_utc(window_end),
                BookedSlots.end_time > ensure_utc(window_start),
                (
                    (BookedSlots.status == SlotStatus.CONFIRMED.value)
                    | (
                        (BookedSlots.status == SlotStatus.SCHEDULED.value)
                        & (BookedSlots.expiry_at > now)
                    )
                ),
            )
            .all()
        )

        occupancy: dict[tuple[int, date], CachedDaySlots] = {}
        for row in rows:
            venue = court_venue[row.court_id]
            tz = get_timezone(venue.timezone, self.config.default_timezone)
            local_date = to_local(row.start_time, tz).date()
            day = occupancy.setdefault((venue.id, local_date), CachedDaySlots())
            entry = CachedSlot(
                court_id=row.court_id,
                start_time=row.start_time,
                end_time=row.end_time,
                booking_id=row.booking_id,
                slot_id=row.id,
                status=row.status,
                expires_at=row.expiry_at,
            )
            if row.status == SlotStatus.CONFIRMED.value:
                day.confirmed.append(entry)
            else:
                day.reserved.append(entry)
        return occupancy
