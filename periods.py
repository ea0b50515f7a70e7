from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class TimeRange(str, Enum):
    week = "week"
    month = "month"
    year = "year"


class TrendGrouping(str, Enum):
    day = "day"
    week = "week"
    month = "month"


@dataclass(frozen=True)
class Period:
    """Half-open window: start <= t < end."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_local_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    tz = ZoneInfo(get_settings().timezone)
    return moment.astimezone(tz).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1)


def add_months_to_start(moment: datetime, count: int) -> datetime:
    month_index = (moment.year * 12) + (moment.month - 1) + count
    return datetime(month_index // 12, (month_index % 12) + 1, 1)


def month_window(year: int, month: int) -> Period:
    start = month_start(year, month)
    return Period(start, add_months_to_start(start, 1))


def resolve_time_range(
    time_range: TimeRange, now: Optional[datetime] = None
) -> tuple[Period, Period]:
    """Return the (current, previous) windows for a time range."""
    now = now or local_now()
    if time_range == TimeRange.week:
        start = now - timedelta(days=7)
        current = Period(start, start_of_day(now) + timedelta(days=1))
        previous = Period(now - timedelta(days=14), start)
        return current, previous
    if time_range == TimeRange.month:
        start = month_start(now.year, now.month)
        current = Period(start, add_months_to_start(start, 1))
        previous = Period(add_months_to_start(start, -1), start)
        return current, previous

    start = datetime(now.year, 1, 1)
    current = Period(start, datetime(now.year + 1, 1, 1))
    previous = Period(datetime(now.year - 1, 1, 1), start)
    return current, previous


def _step(moment: datetime, group_by: TrendGrouping) -> datetime:
    if group_by == TrendGrouping.day:
        return moment + timedelta(days=1)
    if group_by == TrendGrouping.week:
        return moment + timedelta(days=7)
    return add_months_to_start(moment, 1)


def trend_buckets(
    time_range: TimeRange,
    group_by: TrendGrouping,
    now: Optional[datetime] = None,
) -> list[Period]:
    now = now or local_now()
    current, _previous = resolve_time_range(time_range, now)

    if time_range == TimeRange.week and group_by == TrendGrouping.day:
        today = start_of_day(now)
        first = today - timedelta(days=6)
        return [
            Period(first + timedelta(days=i), first + timedelta(days=i + 1))
            for i in range(7)
        ]

    # These shapes always cover the whole period; the rest stop at now.
    full_period = {
        (TimeRange.month, TrendGrouping.week),
        (TimeRange.year, TrendGrouping.month),
    }
    limit = current.end if (time_range, group_by) in full_period else now
    buckets: list[Period] = []
    cursor = current.start
    # A year of days is the largest grid any range/grouping pair produces.
    while cursor < limit and len(buckets) < 366:
        nxt = _step(cursor, group_by)
        buckets.append(Period(cursor, min(nxt, current.end)))
        cursor = nxt
    return buckets
