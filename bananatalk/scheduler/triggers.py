"""Job schedules: APScheduler triggers paired with a readable description.

Cron triggers evaluate in their own timezone, so DST transitions shift the
UTC instant rather than the local time. Interval triggers stay anchored on
their start date, never on when the previous run finished.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@dataclass(frozen=True)
class Schedule:
    trigger: BaseTrigger
    description: str


def _check_time_of_day(hour: int, minute: int) -> None:
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"invalid time of day {hour:02d}:{minute:02d}")


def daily(hour: int, minute: int = 0, tz: str = "UTC") -> Schedule:
    """Every day at HH:MM local time."""
    _check_time_of_day(hour, minute)
    return Schedule(
        trigger=CronTrigger(hour=hour, minute=minute, timezone=tz),
        description=f"daily@{hour:02d}:{minute:02d}[{tz}]",
    )


def weekly(weekday: int, hour: int, minute: int = 0, tz: str = "UTC") -> Schedule:
    """Once a week on ``weekday`` (0 = Monday) at HH:MM local time."""
    if not 0 <= weekday < 7:
        raise ValueError(f"invalid weekday {weekday}")
    _check_time_of_day(hour, minute)
    return Schedule(
        trigger=CronTrigger(day_of_week=WEEKDAYS[weekday], hour=hour, minute=minute, timezone=tz),
        description=f"weekly@{WEEKDAYS[weekday].upper()}/{hour:02d}:{minute:02d}[{tz}]",
    )


def every(interval: timedelta, start_date: Optional[datetime] = None) -> Schedule:
    """Fixed interval anchored on ``start_date`` (default: one interval from now)."""
    if interval <= timedelta(0):
        raise ValueError("interval must be positive")
    seconds = interval.total_seconds()
    if seconds % 3600 == 0:
        description = f"interval={int(seconds) // 3600}h"
    elif seconds % 60 == 0:
        description = f"interval={int(seconds) // 60}m"
    else:
        description = f"interval={seconds:g}s"
    return Schedule(
        trigger=IntervalTrigger(seconds=seconds, start_date=start_date, timezone="UTC"),
        description=description,
    )
