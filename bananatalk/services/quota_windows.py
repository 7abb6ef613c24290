"""Calendar window arithmetic for quota counters.

Daily windows follow the configured timezone; hourly windows are UTC.
Lifetime counters share a fixed anchor and never roll over.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from bananatalk.tiers import Window

LIFETIME_ANCHOR = datetime(1970, 1, 1, tzinfo=timezone.utc)


@lru_cache(maxsize=32)
def _zone(tz_name: str) -> ZoneInfo:
    return ZoneInfo(tz_name)


def day_start(now: datetime, tz_name: str = "UTC") -> datetime:
    """Start of the calendar day containing ``now`` in ``tz_name``, as UTC."""
    local = now.astimezone(_zone(tz_name))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def next_day_start(now: datetime, tz_name: str = "UTC") -> datetime:
    """Start of the following calendar day in ``tz_name``, as UTC.

    Computed on local dates so DST transitions yield 23h or 25h days.
    """
    zone = _zone(tz_name)
    local = now.astimezone(zone)
    tomorrow = (local + timedelta(days=1)).date()
    midnight = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=zone)
    return midnight.astimezone(timezone.utc)


def hour_start(now: datetime) -> datetime:
    """Start of the UTC hour containing ``now``."""
    return now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def window_start(window: Window, now: datetime, tz_name: str = "UTC") -> datetime:
    if window == Window.DAILY:
        return day_start(now, tz_name)
    if window == Window.HOURLY:
        return hour_start(now)
    return LIFETIME_ANCHOR


def window_end(window: Window, now: datetime, tz_name: str = "UTC") -> Optional[datetime]:
    """Instant at which the window containing ``now`` resets (None for lifetime)."""
    if window == Window.DAILY:
        return next_day_start(now, tz_name)
    if window == Window.HOURLY:
        return hour_start(now) + timedelta(hours=1)
    return None
