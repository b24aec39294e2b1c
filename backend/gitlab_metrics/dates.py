"""Date parsing helpers for GitLab timestamps."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

DAY = timedelta(days=1)

# GitLab formats: "2025-01-02T10:15:30Z", "2025-01-02T10:15:30.123+00:00", "2025-01-02"
_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
]


def parse_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """Parse a GitLab timestamp into a timezone-aware UTC datetime.

    Naive values are assumed to be UTC. Date-only values resolve to
    midnight UTC. Returns None for empty or unparseable input.
    """
    if not value:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = None
        for fmt in _FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO-8601 UTC string ending in 'Z'."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def within(value: Optional[datetime], start: datetime, end: datetime) -> bool:
    """True when value falls inside the closed interval [start, end]."""
    return value is not None and start <= value <= end


def days_between(start: datetime, end: datetime) -> float:
    return (end - start) / DAY


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(hours=1)
