# backend/courtbook/services/refund_policy.py
"""
Cancellation refund policy.

    hours before start >= 24   → full refund
    2 <= hours < 24            → 50%
    hours < 2                  → nothing

An explicit (admin) override is clamped to [0, total] instead.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..timezones import ensure_utc, utc_now
from .slots.pricing import round_half_up

FULL_REFUND_HOURS = 24
HALF_REFUND_HOURS = 2


@dataclass(frozen=True)
class RefundQuote:
    amount: int
    percentage: int
    hours_before_start: float


def calculate_refund(
    start_time: datetime,
    total_amount: int,
    override: Optional[int] = None,
    now: Optional[datetime] = None,
) -> RefundQuote:
    now = now or utc_now()
    hours = (ensure_utc(start_time) - ensure_utc(now)).total_seconds() / 3600

    if override is not None:
        amount = max(0, min(override, total_amount))
    elif hours >= FULL_REFUND_HOURS:
        amount = total_amount
    elif hours >= HALF_REFUND_HOURS:
        amount = round_half_up(total_amount * 0.5)
    else:
        amount = 0

    percentage = round_half_up(amount / total_amount * 100) if total_amount else 0
    return RefundQuote(
        amount=amount,
        percentage=percentage,
        hours_before_start=round_half_up(hours * 100) / 100,
    )
