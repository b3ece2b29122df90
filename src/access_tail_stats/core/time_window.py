"""Time bucket helpers.

Buckets are ISO-8601 prefixes of the timestamp exactly as nginx wrote it;
no timezone conversion happens here.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime

_HOUR_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}$")
_MONTH_RE = re.compile(r"^(?P<y>\d{4})-(?P<m>\d{2})$")


def hour_key(ts: str) -> str:
    """Return "YYYY-MM-DDTHH" from a $time_iso8601 string."""
    return ts[:13]


def day_key(ts: str) -> str:
    """Return "YYYY-MM-DD" from a $time_iso8601 string."""
    return ts[:10]


def month_key(ts: str) -> str:
    """Return "YYYY-MM" from a $time_iso8601 string."""
    return ts[:7]


def parse_iso_dt(s: str) -> datetime:
    """Parse ISO8601 datetime. If tz is missing, assume UTC."""
    dt = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def validate_date(s: str) -> str:
    date.fromisoformat(s)
    if len(s) != 10:
        raise ValueError("date must look like YYYY-MM-DD (e.g., 2025-12-31)")
    return s


def validate_hour(s: str) -> str:
    # Accepts YYYY-MM-DDTHH (no minutes), matching hour_key().
    if not _HOUR_RE.match(s):
        raise ValueError("hour must look like YYYY-MM-DDTHH (e.g., 2025-12-31T10)")
    datetime.fromisoformat(s + ":00")
    return s


def validate_month(s: str) -> str:
    m = _MONTH_RE.match(s)
    if not m or not 1 <= int(m.group("m")) <= 12:
        raise ValueError("month must look like YYYY-MM (e.g., 2025-12)")
    return s
