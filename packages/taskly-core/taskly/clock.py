"""
Clock and timezone helpers.

All instants are stored and passed around as aware UTC datetimes. Calendar
decisions (what "today" is for a user) are made in the user's own IANA zone.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Moscow"


def utc_now() -> datetime:
    """Return the current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(name: str | None, default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """
    Resolve an IANA zone name.

    Unknown or empty names fall back to the default zone. User-supplied zone
    names are never trusted to be valid, so this does not raise for them.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r}, falling back to {default}")
    return ZoneInfo(default)


def to_local(instant: datetime, zone: ZoneInfo) -> datetime:
    """Convert an instant to wall-clock time in the given zone."""
    return ensure_utc(instant).astimezone(zone)


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    """Calendar date of an instant as seen in the given zone."""
    return to_local(instant, zone).date()


def last_clock_time(instant: datetime, zone: ZoneInfo, clock_time: time) -> datetime:
    """
    UTC instant of the most recent `clock_time` on the local clock, at or
    before `instant`.

    Shortly after midnight this is yesterday's occurrence, so a window that
    opens at 23:55 stays open past 00:00.
    """
    local = to_local(instant, zone)
    occurrence = datetime.combine(local.date(), clock_time, tzinfo=zone)
    if occurrence > local:
        occurrence = datetime.combine(local.date() - timedelta(days=1), clock_time, tzinfo=zone)
    return occurrence.astimezone(timezone.utc)


def parse_clock_time(value: str) -> time:
    """Parse an "HH:MM" clock time."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid clock time {value!r}, expected HH:MM") from e
