# backend/courtbook/services/recurrence.py
"""
Recurring booking expansion.

    daily    every `interval` days
    weekly   on `days_of_week` (0 = Sunday) of every `interval`-th week
    monthly  same day-of-month every `interval` months; months without
             that day (e.g. the 31st) are skipped

Occurrences keep the venue wall-clock time of the first one, so a
weekly 18:00 booking stays at 18:00 across DST changes. Expansion stops
at `occurrences`, at `end_date` (inclusive, venue-local) or at the
configured cap, whichever comes first.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterator

from ..errors import ValidationError
from ..timezones import ensure_utc, to_local

FREQUENCIES = ("daily", "weekly", "monthly")


@dataclass(frozen=True)
class RecurrenceSpec:
    frequency: str
    interval: int = 1
    end_date: date | None = None
    occurrences: int | None = None
    days_of_week: tuple[int, ...] | None = None

    def __post_init__(self):
        if self.frequency not in FREQUENCIES:
            raise ValidationError(
                f"Unsupported recurrence frequency: {self.frequency}",
                details={"frequency": self.frequency, "allowed": list(FREQUENCIES)},
            )
        if self.interval < 1:
            raise ValidationError("Recurrence interval must be at least 1", details={"interval": self.interval})
        if self.occurrences is not None and self.occurrences < 1:
            raise ValidationError(
                "Recurrence occurrences must be at least 1",
                details={"occurrences": self.occurrences},
            )
        if self.days_of_week is not None:
            if not self.days_of_week or any(not 0 <= d <= 6 for d in self.days_of_week):
                raise ValidationError(
                    "days_of_week must be a non-empty list of values 0..6 (0 = Sunday)",
                    details={"days_of_week": list(self.days_of_week)},
                )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecurrenceSpec":
        end_date = data.get("end_date")
        if isinstance(end_date, str):
            end_date = date.fromisoformat(end_date[:10])
        days = data.get("days_of_week")
        return cls(
            frequency=data.get("frequency", ""),
            interval=int(data.get("interval") or 1),
            end_date=end_date,
            occurrences=data.get("occurrences"),
            days_of_week=tuple(sorted(set(days))) if days is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "interval": self.interval,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "occurrences": self.occurrences,
            "days_of_week": list(self.days_of_week) if self.days_of_week is not None else None,
        }


def _candidate_dates(first: date, spec: RecurrenceSpec) -> Iterator[date]:
    if spec.frequency == "daily":
        current = first
        while True:
            yield current
            current += timedelta(days=spec.interval)

    elif spec.frequency == "weekly":
        weekdays = set(spec.days_of_week or (first.isoweekday() % 7,))
        week_start = first - timedelta(days=first.isoweekday() % 7)
        week = 0
        while True:
            if week % spec.interval == 0:
                for offset in range(7):
                    current = week_start + timedelta(days=7 * week + offset)
                    if current >= first and current.isoweekday() % 7 in weekdays:
                        yield current
            week += 1

    else:
        step = 0
        while True:
            month_index = first.month - 1 + step * spec.interval
            year = first.year + month_index // 12
            month = month_index % 12 + 1
            if first.day <= calendar.monthrange(year, month)[1]:
                yield date(year, month, first.day)
            step += 1


def expand_occurrences(
    start: datetime,
    end: datetime,
    spec: RecurrenceSpec,
    tz,
    max_occurrences: int,
) -> list[tuple[datetime, datetime]]:
    """
    Expand the first occurrence [start, end) into UTC intervals.

    Raises:
        ValidationError: the recurrence yields no occurrence
    """
    local_start = to_local(start, tz).replace(tzinfo=None)
    duration = end - start
    limit = min(spec.occurrences or max_occurrences, max_occurrences)

    occurrences: list[tuple[datetime, datetime]] = []
    for day in _candidate_dates(local_start.date(), spec):
        if len(occurrences) >= limit:
            break
        if spec.end_date and day > spec.end_date:
            break
        wall_start = datetime.combine(day, local_start.time())
        occ_start = tz.localize(wall_start)
        occ_end = tz.localize(wall_start + duration)
        occurrences.append((ensure_utc(occ_start), ensure_utc(occ_end)))

    if not occurrences:
        raise ValidationError(
            "Recurrence produces no occurrences",
            details={"recurrence": spec.to_dict()},
        )
    return occurrences
