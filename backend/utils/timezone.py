"""
Timezone Utility Module
Per-user local time helpers for quota resets, plus UTC helpers for storage.

All timestamps are stored as UTC ISO strings. Naive datetimes are treated as UTC.
"""
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.config import DEFAULT_TIMEZONE

UTC_TZ = ZoneInfo("UTC")

DateLike = Union[datetime, str]


def now_utc() -> datetime:
    """Get current datetime in UTC timezone."""
    return datetime.now(UTC_TZ)


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to the product default."""
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_utc(dt: datetime) -> datetime:
    """Convert any datetime to UTC timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC_TZ)
    return dt.astimezone(UTC_TZ)


def parse_iso(value: Optional[DateLike]) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) as an aware UTC datetime.

    Args:
        value: ISO format datetime string (e.g., '2025-11-29T18:00:00Z') or datetime

    Returns:
        aware UTC datetime, or None if parsing fails
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)

    try:
        return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def get_user_time(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Get the user's current time in their timezone."""
    return to_utc(now or now_utc()).astimezone(get_zone(tz_name))


def get_user_midnight(tz_name: Optional[str], at: Optional[datetime] = None) -> datetime:
    """Start of the user's local day containing `at` (defaults to now)."""
    local = get_user_time(tz_name, at)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def should_reset_daily(last_reset: Optional[DateLike], tz_name: Optional[str], now: Optional[datetime] = None) -> bool:
    """True when the user's local midnight has passed since the last reset."""
    last = parse_iso(last_reset)
    if last is None:
        return True
    return get_user_midnight(tz_name, now) > last


def should_reset_monthly(last_reset: Optional[DateLike], tz_name: Optional[str], now: Optional[datetime] = None) -> bool:
    """True when the user's local calendar month has advanced since the last reset."""
    last = parse_iso(last_reset)
    if last is None:
        return True
    zone = get_zone(tz_name)
    last_local = last.astimezone(zone)
    now_local = get_user_time(tz_name, now)
    return (last_local.year, last_local.month) != (now_local.year, now_local.month)


def format_user_date(dt: DateLike, tz_name: Optional[str], fmt: str = "%b %d, %Y %I:%M %p") -> str:
    """Format a timestamp for display in the user's timezone."""
    parsed = parse_iso(dt)
    if parsed is None:
        return ""
    return parsed.astimezone(get_zone(tz_name)).strftime(fmt)


def get_utc_date_today(now: Optional[datetime] = None) -> str:
    """Get today's date in UTC as YYYY-MM-DD string."""
    return to_utc(now or now_utc()).strftime("%Y-%m-%d")
