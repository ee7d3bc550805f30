"""Time and timezone utilities for post timestamps."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from postpulse.core.logging import get_logger

logger = get_logger(__name__)

# Format used by the search API, e.g. "Wed Oct 10 20:19:24 +0000 2018"
STATUS_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def utcnow() -> datetime:
    """Get current time in UTC."""
    return datetime.now(timezone.utc)


def normalize_timezone(dt: datetime, target_tz: timezone = timezone.utc) -> datetime:
    """
    Normalize datetime to target timezone.

    Naive datetimes are assumed to be UTC, which is how they come back
    from backends without timezone support (SQLite).
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(target_tz)


def parse_status_date(date_string: Any) -> Optional[datetime]:
    """
    Parse the ``created_at`` string of a status into a UTC datetime.

    Accepts the search API's native format and ISO 8601 as a fallback.
    Returns None when the value is not a string or cannot be parsed.
    """
    if not date_string or not isinstance(date_string, str):
        return None

    date_string = date_string.strip()

    try:
        return normalize_timezone(datetime.strptime(date_string, STATUS_DATE_FORMAT))
    except ValueError:
        pass

    try:
        if date_string.endswith("Z"):
            date_string = date_string[:-1] + "+00:00"
        return normalize_timezone(datetime.fromisoformat(date_string))
    except ValueError:
        logger.warning(f"Could not parse status date: {date_string}")
        return None


def window_start(window: timedelta, now: Optional[datetime] = None) -> datetime:
    """Get the lower bound of a sliding window ending at ``now``."""
    now = normalize_timezone(now) if now else utcnow()
    return now - window
