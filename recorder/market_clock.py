"""Market-local calendar arithmetic.

All helpers take an explicit UTC instant so callers (and tests) control the
clock. Day boundaries are computed on the market's wall clock and converted
back to absolute instants, which keeps delays correct across DST changes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from recorder.errors import ConfigError


def load_market_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ConfigError when unknown."""
    if not name or not name.strip():
        raise ConfigError("Market timezone name is empty")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise ConfigError(f"Unknown market timezone: {name}") from exc


def market_now(zone: ZoneInfo, now_utc: datetime) -> datetime:
    return now_utc.astimezone(zone)


def local_midnight(zone: ZoneInfo, day: date) -> datetime:
    """Midnight of a calendar day on the market's wall clock."""
    return datetime.combine(day, time(0, 0), tzinfo=zone)


def local_yesterday_midnight(zone: ZoneInfo, now_utc: datetime) -> datetime:
    """Midnight of the market's previous calendar day."""
    today = market_now(zone, now_utc).date()
    return local_midnight(zone, today - timedelta(days=1))


def days_back(zone: ZoneInfo, newest_day: datetime, count: int) -> tuple[datetime, ...]:
    """Newest-first window of local midnights starting at newest_day."""
    start = newest_day.astimezone(zone).date()
    return tuple(local_midnight(zone, start - timedelta(days=index)) for index in range(count))


def next_local_midnight(zone: ZoneInfo, now_utc: datetime) -> datetime:
    today = market_now(zone, now_utc).date()
    return local_midnight(zone, today + timedelta(days=1))


def delay_until_next_local_midnight(zone: ZoneInfo, now_utc: datetime) -> timedelta:
    """Absolute time remaining until the market's next local midnight."""
    target = next_local_midnight(zone, now_utc).astimezone(timezone.utc)
    return target - now_utc.astimezone(timezone.utc)


def timezone_offset_seconds(zone: ZoneInfo, now_utc: datetime, host_zone: ZoneInfo | None = None) -> int:
    """Signed offset of the market zone relative to the host zone."""
    market_offset = market_now(zone, now_utc).utcoffset() or timedelta(0)
    host_now = now_utc.astimezone(host_zone) if host_zone is not None else now_utc.astimezone()
    host_offset = host_now.utcoffset() or timedelta(0)
    return int((market_offset - host_offset).total_seconds())
