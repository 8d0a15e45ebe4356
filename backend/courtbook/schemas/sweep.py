# backend/courtbook/schemas/sweep.py

from datetime import datetime
from pydantic import BaseModel


class SweepReportRead(BaseModel):
    processed_at: datetime
    expired_slot_count: int
    expired_booking_count: int
    processed_booking_ids: list[int]
    restored_hold_count: int
    restored_confirmed_count: int
    errors: list[str]

    model_config = {"from_attributes": True}
