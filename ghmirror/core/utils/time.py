"""Time utilities for consistent timezone handling."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """
    Get current UTC time as a timezone-aware datetime.

    All in-memory timestamps (scheduler state, rate-limit arithmetic)
    should use this function.

    Returns:
        datetime: Current UTC time with timezone information.

    Example:
        >>> now = utcnow()
        >>> now.tzinfo == UTC
        True
    """
    return datetime.now(UTC)


def utcnow_naive() -> datetime:
    """
    Get current UTC time as a naive datetime (no timezone info).

    Intended for SQLAlchemy DateTime columns that don't have
    timezone=True. Every persisted timestamp in the mirror is naive UTC.

    Returns:
        datetime: Current UTC time without timezone information.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_github_datetime(value: str | None) -> datetime | None:
    """
    Parse an upstream ISO-8601 timestamp into naive UTC.

    Accepts the trailing "Z" form the API returns. Empty or malformed
    values yield None instead of raising.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_naive_utc(parsed)


def isoformat_utc(value: datetime | None) -> str | None:
    """Render a naive-UTC or aware datetime as an ISO string with offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()
