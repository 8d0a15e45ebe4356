# backend/courtbook/services/slots/config.py
"""
Engine configuration for slot generation, holds and availability listing.
"""

from dataclasses import dataclass
from functools import lru_cache

from ...config import Settings, get_settings


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for the availability/reservation engine.

    Attributes:
        hold_minutes: How long a pending reservation holds its slots
        default_duration_minutes: Slot length when the caller gives none
        allowed_durations: Slot lengths accepted by availability listing
        lookahead_days: Default listing window (date_from + N days)
        max_range_days: Widest listing window accepted
        default_limit / max_limit: Venue page size bounds
        unfiltered_venue_cap: Venue page cap when no venue filter is given
        recurring_max_occurrences: Upper bound on recurrence expansion
        claim_bucket_minutes: Granularity of the durable slot claim guard
        default_opening_time / default_closing_time: Used when a venue has none
        default_timezone: Used when a venue timezone is missing or unknown
        cache_repair_days: How far ahead the sweeper re-caches confirmed slots
    """
    hold_minutes: int = 10
    default_duration_minutes: int = 60
    allowed_durations: tuple[int, ...] = (60, 90, 120)
    lookahead_days: int = 10
    max_range_days: int = 30
    default_limit: int = 50
    max_limit: int = 100
    unfiltered_venue_cap: int = 5
    recurring_max_occurrences: int = 50
    claim_bucket_minutes: int = 5
    default_opening_time: str = "06:00"
    default_closing_time: str = "23:00"
    default_timezone: str = "Asia/Ho_Chi_Minh"
    cache_repair_days: int = 30

    def __post_init__(self):
        """Validate configuration."""
        if self.claim_bucket_minutes not in (1, 5, 10, 15, 30, 60):
            raise ValueError(
                f"claim_bucket_minutes must divide an hour evenly, got {self.claim_bucket_minutes}"
            )
        if self.hold_minutes <= 0:
            raise ValueError(f"hold_minutes must be positive, got {self.hold_minutes}")
        if self.recurring_max_occurrences <= 0:
            raise ValueError(
                f"recurring_max_occurrences must be positive, got {self.recurring_max_occurrences}"
            )

    @property
    def hold_seconds(self) -> int:
        return self.hold_minutes * 60


def time_str_to_minutes(value: str) -> int:
    """
    Convert "HH:MM" (or "HH:MM:SS") to minutes since midnight.

    "24:00" is accepted and maps to 1440 (end of day).
    """
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time string: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    total = hours * 60 + minutes
    if not 0 <= minutes < 60 or not 0 <= total <= 24 * 60:
        raise ValueError(f"Invalid time string: {value!r}")
    return total


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def booking_config_from_settings(settings: Settings) -> BookingConfig:
    return BookingConfig(
        hold_minutes=settings.hold_minutes,
        lookahead_days=settings.availability_lookahead_days,
        recurring_max_occurrences=settings.recurring_max_occurrences,
        claim_bucket_minutes=settings.claim_bucket_minutes,
        default_timezone=settings.default_timezone,
    )


@lru_cache
def get_booking_config() -> BookingConfig:
    """Booking configuration derived from process settings."""
    return booking_config_from_settings(get_settings())
