"""Timezone helpers for subscription periods."""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def as_utc(value: datetime | None) -> datetime | None:
    """DB drivers without tz support (sqlite) hand back naive UTC values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_calendar_days(start: datetime, days: int, tz_name: str = "UTC") -> datetime:
    """
    start + N calendar days in the given zone (same wall-clock time N dates later),
    not N * 24h: across a DST change the UTC distance is 23h or 25h per day.
    """
    local = as_utc(start).astimezone(ZoneInfo(tz_name))
    return (local + timedelta(days=days)).astimezone(timezone.utc)
