"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ValueError when unknown."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")


def day_bounds_utc(day: date, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """
    The calendar day in tz_name as a half-open UTC interval [start, end).

    Uses the next local midnight as the end so DST days are 23 or 25 hours.
    """
    zone = get_zone(tz_name)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return to_utc(start), to_utc(end)


def format_slot(dt: datetime, tz_name: str = "UTC") -> str:
    """
    Human-readable start time for notification text.

    ONLY use this at display boundaries.
    """
    local = to_utc(dt).astimezone(get_zone(tz_name))
    return local.strftime("%a %d %b %Y at %H:%M %Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)
