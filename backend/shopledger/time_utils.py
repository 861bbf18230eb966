# Overview: UTC time helpers shared by models, pricing and the HTTP layer.
#
# Internally every datetime is UTC-naive. Values leave the service as
# ISO-8601 with a trailing "Z".

from __future__ import annotations

import math
from datetime import datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_date_only(value: str) -> bool:
    """True for a bare calendar date such as "2024-03-01"."""
    return len(value.strip()) == 10 and "T" not in value


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string to a UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight of that day
    - naive "YYYY-MM-DDTHH:MM[:SS]" is taken as UTC
    - "...Z" or "...+HH:MM" offsets are converted to UTC

    Raises ValueError for anything else.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def end_of_day(dt: datetime) -> datetime:
    """Last representable instant of dt's calendar day."""
    return datetime.combine(dt.date(), time.max)


def elapsed_whole_hours(start: datetime, end: datetime) -> int:
    """Hours from start to end, truncated toward zero (negative if end < start)."""
    return math.trunc((end - start).total_seconds() / 3600)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision with a trailing 'Z'; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    out = dt.astimezone(timezone.utc).replace(microsecond=0)
    return out.isoformat().replace("+00:00", "Z")
