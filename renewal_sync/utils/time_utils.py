"""Millisecond timestamp helpers."""

from datetime import datetime, timezone

MINUTE_MILLIS = 60 * 1000
HOUR_MILLIS = 60 * MINUTE_MILLIS
DAY_MILLIS = 24 * HOUR_MILLIS


def days_to_millis(days: int) -> int:
    """Convert whole days to milliseconds."""
    return days * DAY_MILLIS


def millis_to_iso(millis: int) -> str:
    """Format Unix millis as an ISO 8601 UTC string.

    Example:
        >>> millis_to_iso(0)
        '1970-01-01T00:00:00+00:00'
    """
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()
