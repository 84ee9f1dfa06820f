"""
Common date/time utility functions for consistent date/time handling across the application

Storage: All timestamps are stored in UTC
Comparison: Expiry checks always use the server clock (utc_now), never client-supplied time

SQLite hands timestamps back without tzinfo, Postgres hands them back aware;
as_utc normalises both before any comparison.
"""

from datetime import date, datetime, timedelta, timezone


def as_utc(dt: datetime) -> datetime:
    """
    Convert dt to tz-aware UTC.
    If dt is naive, we treat it as UTC (consistent with existing behavior).

    Args:
        dt: datetime object (naive or timezone-aware)

    Returns:
        datetime object in UTC timezone
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def is_past(expires_at: datetime | None, now: datetime) -> bool:
    """
    True once now is strictly after expires_at. None means "never expires".
    """
    if expires_at is None:
        return False
    return as_utc(now) > as_utc(expires_at)


def parse_iso_string(iso_string: str) -> datetime:
    """
    Parse an ISO 8601 string to UTC datetime.
    Handles both with and without 'Z' suffix.

    Args:
        iso_string: ISO 8601 string (e.g., "2024-12-28T10:30:00.000Z" or "2024-12-28T10:30:00+00:00")

    Returns:
        datetime object in UTC timezone
    """
    # Replace 'Z' with '+00:00' for consistent parsing
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"

    dt = datetime.fromisoformat(iso_string)
    return as_utc(dt)


def to_date(value) -> date | None:
    """
    Coerce a record's natural date (date, datetime or ISO string) to a date.
    Returns None when the value is missing or unparsable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            if len(value) == 10:
                return date.fromisoformat(value)
            return parse_iso_string(value).date()
        except ValueError:
            return None
    return None


def in_date_window(value, date_from: date | None, date_to: date | None) -> bool:
    """
    Inclusive date window check. Without bounds everything passes; with any
    bound, records without a usable date are outside the window.
    """
    if date_from is None and date_to is None:
        return True
    record_date = to_date(value)
    if record_date is None:
        return False
    if date_from is not None and record_date < date_from:
        return False
    if date_to is not None and record_date > date_to:
        return False
    return True


def days_from_now(days: int, now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(days=days)
