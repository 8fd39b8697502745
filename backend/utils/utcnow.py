"""UTC helpers.

Database columns and exchange timestamps are stored as naive UTC
datetimes. Anything sent to a browser or written to a log line goes out
as an ISO-8601 string with a trailing ``Z``.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utcfromtimestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def utc_iso(dt: Optional[datetime] = None, timespec: str = "auto") -> str:
    """``2025-01-05T10:00:00Z`` style string for *dt* (default: now).

    Aware datetimes are converted to UTC first.
    """
    if dt is None:
        dt = utcnow()
    elif dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(timespec=timespec) + "Z"
