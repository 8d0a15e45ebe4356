from .enums import ACTIVE, BookingStatus, BookingType, SlotStatus
from .tables import (
    Base,
    BookedSlots,
    Bookings,
    Courts,
    Payments,
    PriceRules,
    SlotClaims,
    Venues,
    metadata,
)

__all__ = [
    "ACTIVE",
    "Base",
    "BookedSlots",
    "Bookings",
    "BookingStatus",
    "BookingType",
    "Courts",
    "Payments",
    "PriceRules",
    "SlotClaims",
    "SlotStatus",
    "Venues",
    "metadata",
]
