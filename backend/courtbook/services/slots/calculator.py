# backend/courtbook/services/slots/calculator.py
"""
Slot generation for one court on one day.

Candidates start at the venue opening time (or, for today, at "now"
rounded up to the next multiple of the slot duration) and step by the
duration while start + duration <= closing time. A candidate that
overlaps an occupied interval is skipped:

    candidate_start < occupied_end AND candidate_end > occupied_start

Touching endpoints do not overlap. Generation is a pure function of its
inputs; pricing is applied by `price_day_slots`, which drops candidates
no rule covers.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Sequence

from ...timezones import (
    get_timezone,
    local_datetime,
    minutes_since_midnight,
    to_local,
    utc_now,
)
from .config import time_str_to_minutes
from .pricing import PriceRuleWindow, price_interval

Interval = tuple[datetime, datetime]


@dataclass(frozen=True)
class CandidateSlot:
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class PricedSlot:
    start_time: datetime
    end_time: datetime
    price: int


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap test."""
    return start_a < end_b and end_a > start_b


def first_start_today(local_now: datetime, duration_minutes: int) -> int:
    """
    Minutes since midnight of the first slot boundary at or after now.

    A slot already partially elapsed is never offered: 10:07 with a 60
    minute duration yields 11:00.
    """
    elapsed = (
        minutes_since_midnight(local_now)
        + local_now.second / 60
        + local_now.microsecond / 60_000_000
    )
    return math.ceil(elapsed / duration_minutes) * duration_minutes


def generate_day_slots(
    target_date: date,
    opening_time: str,
    closing_time: str,
    duration_minutes: int,
    timezone: str | object,
    occupied: Sequence[Interval] = (),
    now: datetime | None = None,
) -> Iterator[CandidateSlot]:
    """
    Lazily yield free candidate slots for one court/day.

    Args:
        target_date: Venue-local date
        opening_time / closing_time: "HH:MM" venue-local wall clock
        duration_minutes: Slot length (also the step)
        timezone: IANA name or pytz zone of the venue
        occupied: Intervals already held or booked on this court
        now: Current instant (defaults to the wall clock)

    Yields:
        CandidateSlot with venue-local aware datetimes.
    """
    if duration_minutes <= 0:
        return

    tz = get_timezone(timezone) if isinstance(timezone, str) or timezone is None else timezone
    now = now or utc_now()

    open_min = time_str_to_minutes(opening_time)
    close_min = time_str_to_minutes(closing_time)
    start_min = open_min

    local_now = to_local(now, tz)
    if local_now.date() == target_date:
        start_min = max(start_min, first_start_today(local_now, duration_minutes))
    elif target_date < local_now.date():
        return

    day_end = local_datetime(target_date, close_min, tz)
    step = timedelta(minutes=duration_minutes)
    slot_start = local_datetime(target_date, start_min, tz)

    while slot_start + step <= day_end:
        slot_end = tz.normalize(slot_start + step)
        if not any(overlaps(slot_start, slot_end, o_start, o_end) for o_start, o_end in occupied):
            yield CandidateSlot(start_time=slot_start, end_time=slot_end)
        slot_start = slot_end


def price_day_slots(
    candidates: Iterable[CandidateSlot],
    rules: Sequence[PriceRuleWindow],
    duration_minutes: int,
) -> list[PricedSlot]:
    """
    Price candidates against a court/day rule set.

    Candidates with no pricing coverage are dropped: they cannot be booked.
    """
    if not rules:
        return []

    priced: list[PricedSlot] = []
    for slot in candidates:
        start_min = minutes_since_midnight(slot.start_time)
        price = price_interval(rules, start_min, start_min + duration_minutes)
        if price is None or price <= 0:
            continue
        priced.append(PricedSlot(slot.start_time, slot.end_time, price))
    return priced


def calculate_day_slots(
    target_date: date,
    opening_time: str,
    closing_time: str,
    duration_minutes: int,
    timezone: str | object,
    occupied: Sequence[Interval],
    rules: Sequence[PriceRuleWindow],
    now: datetime | None = None,
) -> list[PricedSlot]:
    """Generate and price free slots for one court/day."""
    if not rules:
        return []

    candidates = generate_day_slots(
        target_date,
        opening_time,
        closing_time,
        duration_minutes,
        timezone,
        occupied,
        now,
    )
    return price_day_slots(candidates, rules, duration_minutes)
