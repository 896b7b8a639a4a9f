from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Timestamps are stored as naive datetimes that mean UTC.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a date or datetime from a query string or body.

    Blank input gives None. A bare "YYYY-MM-DD" is midnight of that day,
    naive values are taken as UTC and offsets (including a trailing "Z")
    are folded into UTC. Raises ValueError on anything else.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 string ending in 'Z'."""
    if dt is None:
        return None
    stamp = _as_naive_utc(dt).replace(microsecond=0)
    return f"{stamp.isoformat()}Z"


def utc_date_key(dt: datetime) -> str:
    """Calendar day (UTC) of a stored timestamp, as YYYY-MM-DD."""
    return _as_naive_utc(dt).date().isoformat()
