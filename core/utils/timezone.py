"""
Timezone utilities

Everything is stored in UTC; calendar days (history points) are UTC days.
"""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Current UTC time (timezone-aware)

    Shorthand for datetime.now(timezone.utc).
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Convert to UTC; naive datetimes are assumed to be UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_day(dt: datetime) -> date:
    """UTC calendar day of a datetime

    Example:
        >>> utc_day(datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc))
        datetime.date(2026, 10, 19)
    """
    return ensure_utc(dt).date()


def to_iso(dt: datetime) -> str:
    """UTC ISO-8601 string (storage format)"""
    return ensure_utc(dt).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse a stored ISO-8601 string back into an aware UTC datetime"""
    return ensure_utc(datetime.fromisoformat(value))


def utc_from_timestamp(ts: int | float) -> datetime:
    """Unix timestamp (seconds) to UTC datetime

    Example:
        >>> utc_from_timestamp(1760832000)
        datetime.datetime(2025, 10, 19, 0, 0, tzinfo=datetime.timezone.utc)
    """
    return datetime.fromtimestamp(ts, tz=timezone.utc)
