"""Wall-clock helpers for circle-local dates and times."""

from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


def circle_now(tz_name: str) -> datetime:
    """Current time in the circle's timezone."""
    return datetime.now(ZoneInfo(tz_name))


def minutes_of(t: time) -> int:
    return t.hour * 60 + t.minute


def add_minutes(t: time, minutes: int) -> Optional[time]:
    """Shift a time of day by `minutes`, or None if it leaves the day."""
    total = minutes_of(t) + minutes
    if total < 0 or total >= 24 * 60:
        return None
    return time(total // 60, total % 60)


def overlaps(start1: time, end1: time, start2: time, end2: time) -> bool:
    """Half-open interval overlap: touching windows do not conflict."""
    return start1 < end2 and start2 < end1


def end_of_week(now: datetime, week_start_date) -> datetime:
    """First instant after the Saturday closing the week, in `now`'s timezone."""
    return datetime.combine(
        week_start_date + timedelta(days=7), time.min, tzinfo=now.tzinfo
    )
