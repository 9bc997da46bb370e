from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}") from None


def parse_date(value) -> date:
    # Expect "YYYY-MM-DD"
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) != 10:
        raise ValueError("Invalid date. Use YYYY-MM-DD")
    return date.fromisoformat(value)


def parse_hhmm(value) -> time:
    # Expect "HH:MM"
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or len(value) != 5 or value[2] != ":":
        raise ValueError("Invalid time. Use HH:MM")
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def parse_instant(value) -> datetime:
    """
    Parses an ISO-8601 instant. A missing offset is rejected so callers
    never send local wall-clock times by accident.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not isinstance(value, str):
            raise ValueError("Invalid datetime. Use ISO-8601 with a UTC offset")
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise ValueError("Datetime must carry an explicit UTC offset")
    return dt.astimezone(timezone.utc)


def iso(dt):
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat()
