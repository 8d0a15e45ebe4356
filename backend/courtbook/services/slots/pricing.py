# backend/courtbook/services/slots/pricing.py
"""
Price rule evaluation.

A court has day-scoped price rules (day_of_week, start_time, end_time,
price per hour). Rules MAY overlap: every active rule contributes its
prorated share for the minutes it covers, so nested or identical rules
add up.

The evaluator works on minute offsets from local midnight:

    overlap = max(0, min(query_end, rule_end) - max(query_start, rule_start))
    cost   += rule.price_per_hour * overlap / 60

A zero total means no rule covered the interval → NoPricingCoverage.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from ...errors import NoPricingCoverage
from ...models import PriceRules
from ...timezones import day_of_week, minutes_since_midnight, to_local
from .config import minutes_to_time_str, time_str_to_minutes


@dataclass(frozen=True)
class PriceRuleWindow:
    court_id: int
    day_of_week: int
    start_minutes: int
    end_minutes: int
    price_per_hour: float

    @classmethod
    def from_row(cls, row: PriceRules) -> "PriceRuleWindow":
        return cls(
            court_id=row.court_id,
            day_of_week=row.day_of_week,
            start_minutes=time_str_to_minutes(row.start_time),
            end_minutes=time_str_to_minutes(row.end_time),
            price_per_hour=row.price,
        )

    @property
    def label(self) -> str:
        return f"{minutes_to_time_str(self.start_minutes)}-{minutes_to_time_str(self.end_minutes)}"


@dataclass(frozen=True)
class PriceSegment:
    """Contribution of one rule to a quote."""
    time_slot: str
    price_per_hour: float
    hours: float
    cost: float


@dataclass(frozen=True)
class PriceQuote:
    amount: int
    applicable_price: float
    duration_hours: float
    segments: tuple[PriceSegment, ...]


RuleIndex = dict[tuple[int, int], list[PriceRuleWindow]]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def _accumulate(
    rules: Iterable[PriceRuleWindow],
    start_minutes: int,
    end_minutes: int,
) -> tuple[float, list[PriceSegment], float]:
    total = 0.0
    applicable = 0.0
    segments: list[PriceSegment] = []

    for rule in rules:
        overlap_start = max(start_minutes, rule.start_minutes)
        overlap_end = min(end_minutes, rule.end_minutes)
        if overlap_start >= overlap_end:
            continue

        hours = (overlap_end - overlap_start) / 60
        cost = rule.price_per_hour * hours
        total += cost
        applicable = rule.price_per_hour
        segments.append(PriceSegment(
            time_slot=rule.label,
            price_per_hour=rule.price_per_hour,
            hours=hours,
            cost=cost,
        ))

    return total, segments, applicable


def price_interval(
    rules: Iterable[PriceRuleWindow],
    start_minutes: int,
    end_minutes: int,
) -> int | None:
    """
    Price [start_minutes, end_minutes) against `rules`.

    Returns:
        Rounded amount, or None when no rule covers any part of the interval.
    """
    total, _, _ = _accumulate(rules, start_minutes, end_minutes)
    if total == 0:
        return None
    return round_half_up(total)


def quote_interval(
    rules: Iterable[PriceRuleWindow],
    start_minutes: int,
    end_minutes: int,
) -> PriceQuote:
    """
    Price an interval with a per-rule breakdown.

    Raises:
        NoPricingCoverage: no active rule covers any part of the interval.
    """
    total, segments, applicable = _accumulate(rules, start_minutes, end_minutes)
    if total == 0:
        raise NoPricingCoverage(
            "No pricing available for the selected time slot",
            details={
                "start": minutes_to_time_str(start_minutes),
                "end": minutes_to_time_str(min(end_minutes, 24 * 60)),
            },
        )

    return PriceQuote(
        amount=round_half_up(total),
        applicable_price=applicable,
        duration_hours=(end_minutes - start_minutes) / 60,
        segments=tuple(segments),
    )


def index_rules(rules: Iterable[PriceRuleWindow]) -> RuleIndex:
    """Group rules by (court_id, day_of_week), ordered by start time."""
    index: RuleIndex = {}
    for rule in rules:
        index.setdefault((rule.court_id, rule.day_of_week), []).append(rule)
    for bucket in index.values():
        bucket.sort(key=lambda r: r.start_minutes)
    return index


class PriceRuleEvaluator:
    """Loads active price rules from the durable store and prices intervals."""

    def __init__(self, db: Session):
        self.db = db

    def load_rules(
        self,
        court_ids: Iterable[int],
        days_of_week: Iterable[int],
    ) -> RuleIndex:
        """Bulk-fetch active rules for every court × day-of-week in one query."""
        court_ids = list(court_ids)
        days = list(days_of_week)
        if not court_ids or not days:
            return {}

        rows = (
            self.db.query(PriceRules)
            .filter(
                PriceRules.court_id.in_(court_ids),
                PriceRules.day_of_week.in_(days),
                PriceRules.is_active == 1,
            )
            .all()
        )
        return index_rules(PriceRuleWindow.from_row(row) for row in rows)

    def price(
        self,
        court_id: int,
        dow: int,
        start_minutes: int,
        end_minutes: int,
    ) -> PriceQuote:
        rules = self.load_rules([court_id], [dow]).get((court_id, dow), [])
        return quote_interval(rules, start_minutes, end_minutes)

    def quote(self, court_id: int, start: datetime, end: datetime, tz) -> PriceQuote:
        """
        Price an absolute interval using the venue-local day and wall clock.

        The end offset is derived from the duration so an interval ending at
        local midnight prices as 24:00 rather than 00:00.
        """
        local_start = to_local(start, tz)
        start_minutes = minutes_since_midnight(local_start)
        duration_minutes = int((end - start).total_seconds() // 60)
        return self.price(
            court_id,
            day_of_week(local_start.date()),
            start_minutes,
            start_minutes + duration_minutes,
        )
