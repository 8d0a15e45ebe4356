# backend/courtbook/timezones.py
"""
Timezone helpers.

Durable timestamps are UTC. Venue opening hours and price rules are
wall-clock times interpreted in the venue timezone.
"""

import logging
from datetime import date, datetime, time, timedelta

import pytz

logger = logging.getLogger(__name__)

UTC = pytz.UTC


def utc_now() -> datetime:
    return datetime.now(UTC)


def get_timezone(name: str | None, default: str = "UTC"):
    """Resolve an IANA zone name, falling back to `default` for unknown names."""
    if name:
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            logger.warning("Unknown timezone %r, using %s", name, default)
    return pytz.timezone(default)


def ensure_utc(dt: datetime) -> datetime:
    """Return `dt` as an aware UTC datetime (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        return UTC.localize(dt)
    return dt.astimezone(UTC)


def to_local(dt: datetime, tz) -> datetime:
    return ensure_utc(dt).astimezone(tz)


def local_datetime(day: date, minutes: int, tz) -> datetime:
    """
    Aware datetime for `minutes` after local midnight of `day`.

    minutes=1440 yields midnight of the following day.
    """
    naive = datetime.combine(day, time.min) + timedelta(minutes=minutes)
    return tz.localize(naive)


def minutes_since_midnight(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def day_of_week(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday (price rule convention)."""
    return day.isoweekday() % 7


def start_of_next_day(day: date, tz) -> datetime:
    return local_datetime(day + timedelta(days=1), 0, tz)


def local_today(tz, now: datetime | None = None) -> date:
    now = now or utc_now()
    return to_local(now, tz).date()
