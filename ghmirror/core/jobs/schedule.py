"""
Schedule arithmetic for daily local-time jobs.

All returned instants are timezone-aware UTC. Offsets come from the IANA
database for the exact local date, so DST changes between today and
tomorrow are handled.
"""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ghmirror.core.jobs.exceptions import ScheduleValidationError


def load_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ScheduleValidationError."""
    if not name or not name.strip():
        raise ScheduleValidationError("Timezone cannot be empty.")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleValidationError(f"Invalid timezone identifier: {name}") from e


def validate_schedule(hour: int, minute: int, timezone: str) -> str:
    """
    Validate a schedule before it is stored.

    Returns:
        The normalized timezone name.

    Raises:
        ScheduleValidationError: On an out-of-range hour or minute, or an
            unknown timezone.
    """
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        raise ScheduleValidationError("Hour must be between 0 and 23.")
    if isinstance(minute, bool) or not isinstance(minute, int) or not 0 <= minute <= 59:
        raise ScheduleValidationError("Minute must be between 0 and 59.")
    return load_timezone(timezone).key


def compute_next_run(
    hour: int,
    minute: int,
    timezone: str,
    now: datetime | None = None,
) -> datetime:
    """
    Compute the next UTC instant for a daily hour:minute in ``timezone``.

    Today's occurrence is used when it is strictly after ``now``;
    otherwise tomorrow's, with its own offset.

    Args:
        hour: Local hour (0-23).
        minute: Local minute (0-59).
        timezone: IANA timezone name.
        now: Reference instant (aware); defaults to the current time.

    Returns:
        Aware UTC datetime strictly after ``now``.
    """
    zone = load_timezone(timezone)
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    local_date = now.astimezone(zone).date()
    at = time(hour, minute)

    candidate = datetime.combine(local_date, at, tzinfo=zone).astimezone(UTC)
    if candidate > now:
        return candidate

    tomorrow = local_date + timedelta(days=1)
    return datetime.combine(tomorrow, at, tzinfo=zone).astimezone(UTC)
