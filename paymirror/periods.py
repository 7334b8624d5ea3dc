"""
Period resolver: dashboard period kind → current/previous windows and chart layout.

All windows are half-open UTC intervals `[start, end)` on calendar boundaries.

| kind  | current                 | previous                  | chart                       |
|-------|-------------------------|---------------------------|-----------------------------|
| today | today                   | yesterday                 | 24 hourly                   |
| week  | last 7 days incl. today | the 7 days before         | current total + 4 weekly    |
| month | this calendar month     | prior calendar month      | one point per day-in-month  |
| year  | this calendar year      | prior calendar year       | 12 monthly                  |

The week "previous" chart keeps its 4-week layout by using its own 28-day
window ending where the current week starts.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from paymirror.models import Granularity, PeriodKind

WEEK_DAYS = 7
WEEKS_IN_PREVIOUS_CHART = 4


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _today(now: datetime) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date()


def _add_months(day: date, months: int) -> date:
    """First day of the month `months` away from `day`'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open UTC interval [start, end)."""
    start: datetime
    end: datetime

    @classmethod
    def between(cls, first_day: date, end_day: date) -> "TimeWindow":
        """Window from midnight of first_day up to (excluding) midnight of end_day."""
        return cls(_midnight(first_day), _midnight(end_day))

    @property
    def start_epoch(self) -> int:
        return int(self.start.timestamp())

    @property
    def end_epoch(self) -> int:
        return int(self.end.timestamp())

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def is_adjacent_to(self, other: "TimeWindow") -> bool:
        """True when this window ends exactly where `other` starts."""
        return self.end == other.start


@dataclass(frozen=True)
class ChartSpec:
    """Which window a revenue series covers and at what granularity."""
    window: TimeWindow
    granularity: Granularity
    label: Optional[str] = None

    @property
    def bucket_seconds(self) -> int:
        return self.granularity.bucket_seconds


@dataclass(frozen=True)
class ResolvedPeriod:
    kind: PeriodKind
    current: TimeWindow
    previous: TimeWindow
    current_chart: ChartSpec
    previous_chart: ChartSpec

    @property
    def granularity(self) -> Granularity:
        return self.previous_chart.granularity


def resolve_period(kind, now: Optional[datetime] = None) -> ResolvedPeriod:
    """
    Resolve a period kind against `now`.

    Args:
        kind: PeriodKind or its string value; unknown values resolve as year
        now: Reference time (naive values are taken as UTC)

    Returns:
        ResolvedPeriod with adjacent, non-overlapping current/previous windows
    """
    kind = PeriodKind.parse(kind)
    today = _today(now or datetime.now(timezone.utc))

    if kind is PeriodKind.TODAY:
        current = TimeWindow.between(today, today + timedelta(days=1))
        previous = TimeWindow.between(today - timedelta(days=1), today)
        return ResolvedPeriod(
            kind, current, previous,
            ChartSpec(current, Granularity.HOUR),
            ChartSpec(previous, Granularity.HOUR),
        )

    if kind is PeriodKind.WEEK:
        week_start = today - timedelta(days=WEEK_DAYS - 1)
        current = TimeWindow.between(week_start, today + timedelta(days=1))
        previous = TimeWindow.between(week_start - timedelta(days=WEEK_DAYS), week_start)
        chart_window = TimeWindow.between(
            week_start - timedelta(days=WEEK_DAYS * WEEKS_IN_PREVIOUS_CHART),
            week_start,
        )
        return ResolvedPeriod(
            kind, current, previous,
            ChartSpec(current, Granularity.TOTAL, label="Current Week"),
            ChartSpec(chart_window, Granularity.WEEK),
        )

    if kind is PeriodKind.MONTH:
        month_start = today.replace(day=1)
        current = TimeWindow.between(month_start, _add_months(month_start, 1))
        previous = TimeWindow.between(_add_months(month_start, -1), month_start)
        return ResolvedPeriod(
            kind, current, previous,
            ChartSpec(current, Granularity.DAY),
            ChartSpec(previous, Granularity.DAY),
        )

    year_start = date(today.year, 1, 1)
    current = TimeWindow.between(year_start, date(today.year + 1, 1, 1))
    previous = TimeWindow.between(date(today.year - 1, 1, 1), year_start)
    return ResolvedPeriod(
        kind, current, previous,
        ChartSpec(current, Granularity.MONTH),
        ChartSpec(previous, Granularity.MONTH),
    )
