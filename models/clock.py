# models/clock.py
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime

# every datetime column stores timezone-aware UTC
UTCDateTime = DateTime(timezone=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC; naive input is taken to be UTC already (SQLite hands stored values back naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
