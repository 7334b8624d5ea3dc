"""
Revenue series builders.

SQL groups revenue into fixed-width buckets counted from the window start
(`(created - start) // bucket_seconds`); these functions fold those buckets
into a labeled, zero-filled series of fixed length.
"""
from datetime import timedelta
from typing import Dict, List

from paymirror.models import ChartPoint, Granularity
from paymirror.periods import WEEK_DAYS, ChartSpec

MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def hourly_series(buckets: Dict[int, float]) -> List[ChartPoint]:
    """24 points labeled "00:00" … "23:00"."""
    return [ChartPoint(f"{hour:02d}:00", buckets.get(hour, 0.0)) for hour in range(24)]


def daily_series(buckets: Dict[int, float], days: int) -> List[ChartPoint]:
    """One point per day of the window, labeled "Day 1" … "Day N"."""
    return [ChartPoint(f"Day {day + 1}", buckets.get(day, 0.0)) for day in range(days)]


def weekly_series(buckets: Dict[int, float], days: int) -> List[ChartPoint]:
    """Fold daily buckets into weeks, oldest first: "Week -N" … "Week -1"."""
    weeks = days // WEEK_DAYS
    revenue = [0.0] * weeks
    for day, amount in buckets.items():
        week = day // WEEK_DAYS
        if 0 <= week < weeks:
            revenue[week] += amount
    return [ChartPoint(f"Week -{weeks - i}", revenue[i]) for i in range(weeks)]


def monthly_series(buckets: Dict[int, float], spec: ChartSpec) -> List[ChartPoint]:
    """Fold daily buckets into calendar months: always 12 points, Jan … Dec."""
    revenue = [0.0] * 12
    for day, amount in buckets.items():
        if 0 <= day < spec.window.days:
            month = (spec.window.start + timedelta(days=day)).month
            revenue[month - 1] += amount
    return [ChartPoint(label, revenue[i]) for i, label in enumerate(MONTH_LABELS)]


def total_series(buckets: Dict[int, float], label: str) -> List[ChartPoint]:
    """A single point summing the whole window."""
    return [ChartPoint(label, sum(buckets.values()))]


def build_series(spec: ChartSpec, buckets: Dict[int, float]) -> List[ChartPoint]:
    """
    Build the series for a chart spec.

    Args:
        spec: Window and granularity
        buckets: Bucket index → summed revenue (sparse)

    Returns:
        Fixed-length series; empty buckets are zero
    """
    granularity = spec.granularity
    if granularity is Granularity.HOUR:
        return hourly_series(buckets)
    if granularity is Granularity.DAY:
        return daily_series(buckets, spec.window.days)
    if granularity is Granularity.WEEK:
        return weekly_series(buckets, spec.window.days)
    if granularity is Granularity.MONTH:
        return monthly_series(buckets, spec)
    return total_series(buckets, spec.label or "Total")
