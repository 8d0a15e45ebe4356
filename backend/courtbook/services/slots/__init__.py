# backend/courtbook/services/slots/__init__.py
"""
Slots module.

Pricing:      price rules prorated over an interval (pricing.py)
Generation:   free, priced slots for one court/day (calculator.py)
Cache:        confirmed / reserved partitions in Redis hashes (redis_store.py)
Availability: many venues × courts × dates (availability.py)
"""

from .config import BookingConfig, get_booking_config
from .pricing import PriceRuleEvaluator, price_interval
from .calculator import calculate_day_slots, generate_day_slots, overlaps
from .redis_store import CachedSlot, SlotsRedisStore
from .invalidator import rebuild_venue_cache
from .availability import AvailabilityService

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "PriceRuleEvaluator",
    "price_interval",
    "calculate_day_slots",
    "generate_day_slots",
    "overlaps",
    "CachedSlot",
    "SlotsRedisStore",
    "rebuild_venue_cache",
    "AvailabilityService",
]
