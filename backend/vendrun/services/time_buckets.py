"""Calendar bucketing helpers for analytics.

Bucket boundaries are local midnights in the requested zone. They are built
from calendar dates and only then attached to the zone, so days that gain or
lose an hour to DST still start at midnight. Comparisons against stored
timestamps happen in UTC.
"""

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta

from vendrun.core.errors import InvalidTimeZone
from vendrun.schemas.analytics import Aggregation, PercentageChange, Trend

T = TypeVar("T")

ROLLING_WINDOW_DAYS = 8
BASELINE_DAYS = 7


@dataclass
class Bucket:
    """Half-open ``[start, end)`` interval in a local zone."""

    day: date  # local calendar date the bucket starts on
    start: datetime
    end: datetime
    label: str

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(timezone.utc)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(timezone.utc)


def load_zone(name: Optional[str]) -> ZoneInfo:
    if not name or not isinstance(name, str):
        raise InvalidTimeZone(name)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTimeZone(name) from None


def at_midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone)


def local_date(moment: datetime, zone: ZoneInfo) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone).date()


def iso_week_start(day: date) -> date:
    """Monday of the ISO week containing *day*."""
    return day - timedelta(days=day.weekday())


def period_start(aggregation: Aggregation, day: date) -> date:
    aggregation = Aggregation(aggregation)
    if aggregation == Aggregation.DAY:
        return day
    if aggregation == Aggregation.WEEK:
        return iso_week_start(day)
    if aggregation == Aggregation.MONTH:
        return day.replace(day=1)
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def add_periods(start: date, aggregation: Aggregation, count: int) -> date:
    aggregation = Aggregation(aggregation)
    if aggregation == Aggregation.DAY:
        return start + timedelta(days=count)
    if aggregation == Aggregation.WEEK:
        return start + timedelta(weeks=count)
    if aggregation == Aggregation.MONTH:
        return start + relativedelta(months=count)
    return start + relativedelta(months=3 * count)


def period_label(aggregation: Aggregation, start: date) -> str:
    aggregation = Aggregation(aggregation)
    if aggregation == Aggregation.DAY:
        return start.isoformat()
    if aggregation == Aggregation.WEEK:
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"
    if aggregation == Aggregation.MONTH:
        return start.strftime("%Y-%m")
    return f"{start.year}-Q{(start.month - 1) // 3 + 1}"


def make_bucket(aggregation: Aggregation, start: date, zone: ZoneInfo) -> Bucket:
    end = add_periods(start, aggregation, 1)
    return Bucket(
        day=start,
        start=at_midnight(start, zone),
        end=at_midnight(end, zone),
        label=period_label(aggregation, start),
    )


def build_buckets(
    aggregation: Aggregation, zone: ZoneInfo, reference: date, count: int
) -> List[Bucket]:
    """*count* consecutive calendar buckets, ascending, the last containing *reference*."""
    last = period_start(aggregation, reference)
    return [
        make_bucket(aggregation, add_periods(last, aggregation, offset), zone)
        for offset in range(-(count - 1), 1)
    ]


def rolling_window_days(today: date, length: int = ROLLING_WINDOW_DAYS) -> List[date]:
    return [today - timedelta(days=offset) for offset in range(length - 1, -1, -1)]


def pad_rolling_window(
    points: Dict[date, T],
    today: date,
    empty: Callable[[date], T],
    length: int = ROLLING_WINDOW_DAYS,
) -> List[Tuple[date, T]]:
    """Fixed-length trailing window ending on *today*, ascending.

    Days with no point get ``empty(day)``; points outside the window are dropped.
    """
    return [(day, points[day] if day in points else empty(day)) for day in rolling_window_days(today, length)]


def bucket_index(buckets: List[Bucket], moment: datetime) -> Optional[int]:
    """Index of the bucket holding *moment*, or None when it falls outside."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    starts = [b.start_utc for b in buckets]
    i = bisect_right(starts, moment.astimezone(timezone.utc)) - 1
    if i < 0 or moment >= buckets[i].end_utc:
        return None
    return i


def build_percentage_change(current: int, previous: float, epsilon: float = 0.5) -> PercentageChange:
    """Compare two totals; a zero baseline counts as one unit."""
    if current == 0 and previous == 0:
        return PercentageChange(current=0, previous=0, delta=0, delta_percent=None, trend=Trend.NEUTRAL)

    delta = current - previous
    percent = delta / max(previous, 1) * 100
    if percent > epsilon:
        trend = Trend.UP
    elif percent < -epsilon:
        trend = Trend.DOWN
    else:
        trend = Trend.NEUTRAL
    return PercentageChange(
        current=current,
        previous=previous,
        delta=round(delta, 2),
        delta_percent=round(percent, 1),
        trend=trend,
    )


def find_extrema(points: Iterable[T], total: Callable[[T], int], start: Callable[[T], datetime]):
    """Return ``(high, low)`` among points with a non-zero total.

    Ties go to the earliest start. Both are None when every total is zero.
    """
    non_zero = sorted((p for p in points if total(p) > 0), key=start)
    if not non_zero:
        return None, None
    high = max(non_zero, key=total)  # max/min keep the first of equal keys
    low = min(non_zero, key=total)
    return high, low


def progress_percent(start: datetime, end: datetime, now: datetime) -> float:
    """Share of ``[start, end)`` elapsed at *now*, clamped to 0..100."""
    start, end, now = (moment.astimezone(timezone.utc) for moment in (start, end, now))
    span = (end - start).total_seconds()
    if span <= 0:
        return 100.0
    elapsed = (now - start).total_seconds()
    return round(min(max(elapsed / span * 100, 0.0), 100.0), 2)
