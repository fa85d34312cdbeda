"""
Timezone utilities for NextUp.
Provides consistent UTC datetime handling for values stored and compared across
the database and the Trakt API.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is UTC and timezone-aware.
    If timezone-naive, assumes it's already UTC and adds UTC timezone.
    If timezone-aware, converts to UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Assume naive datetime is already UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        # Convert to UTC if not already
        return dt.astimezone(timezone.utc)


def format_iso_utc(dt: Optional[datetime]) -> Optional[str]:
    """
    Format datetime as ISO string in UTC.
    Returns None if datetime is None.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
