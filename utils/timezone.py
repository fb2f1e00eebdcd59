"""UTC-everywhere time handling. Business dates are resolved at the edge."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


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


def today_in(tz_name: str) -> date:
    """
    Calendar date "today" as seen by a user in the given timezone.

    Invoice dates are business dates: an invoice written at 01:00 in Jakarta
    belongs to that local day even though UTC is still on the previous one.

    Raises:
        ValueError: If timezone name is invalid
    """
    try:
        local_tz = ZoneInfo(tz_name)
    except KeyError:
        raise ValueError(f"Unknown timezone: {tz_name}")

    return now_utc().astimezone(local_tz).date()


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


def parse_local_date(value: str | date) -> date:
    """
    Parse a YYYY-MM-DD form value as a plain calendar date.

    Never goes through datetime, so the day cannot shift across a timezone
    boundary.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])
