"""Wall-clock ↔ instant conversion for scheduling.

All instants are timezone-aware UTC datetimes. Wall-clock values are a
(date, time) pair interpreted in an IANA zone; zoneinfo resolves the UTC
offset for that specific date, so DST transitions are handled per day.
"""

import logging
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.config import settings

logger = logging.getLogger(__name__)


def is_valid_timezone(name: str | None) -> bool:
    """Return True when `name` is a known IANA zone."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def get_timezone(name: str | None) -> ZoneInfo:
    """Get a ZoneInfo timezone with safe fallback."""
    fallback = settings.DEFAULT_VIEWER_TIMEZONE
    if not name:
        return ZoneInfo(fallback)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", name, fallback)
        return ZoneInfo(fallback)


def local_to_utc(day: date, wall_time: time, tz_name: str | None) -> datetime:
    """Convert a wall-clock time on `day` in `tz_name` to a UTC instant."""
    local = datetime.combine(day, wall_time, tzinfo=get_timezone(tz_name))
    return local.astimezone(timezone.utc)


def utc_to_local(instant: datetime, tz_name: str | None) -> datetime:
    """Express a UTC instant as wall-clock time in `tz_name`."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(get_timezone(tz_name))


def local_date(instant: datetime, tz_name: str | None) -> date:
    """Calendar date of `instant` as seen in `tz_name`."""
    return utc_to_local(instant, tz_name).date()


def ensure_utc(value: datetime, tz_name: str | None = None) -> datetime:
    """Normalize a datetime to UTC; naive values are read in `tz_name` (default UTC)."""
    if value.tzinfo is None:
        tz = get_timezone(tz_name) if tz_name else timezone.utc
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)
