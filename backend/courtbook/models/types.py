# backend/courtbook/models/types.py
"""
Custom SQLAlchemy column types.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, TypeDecorator

from ..timezones import UTC, ensure_utc


class UTCDateTime(TypeDecorator):
    """
    Stores datetimes as naive UTC and returns them as aware UTC.

    SQLite drops tzinfo on round-trip; binding through this type keeps
    comparisons consistent regardless of the backend.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is None:
            return UTC.localize(value)
        return value.astimezone(UTC)
