from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import RepeatFrequency


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    # this month
    return Period(
        "this_month",
        start_of_period(today, RepeatFrequency.monthly),
        end_of_period(today, RepeatFrequency.monthly),
    )


def _add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


_MONTHS_PER_PERIOD = {
    RepeatFrequency.monthly: 1,
    RepeatFrequency.quarterly: 3,
    RepeatFrequency.half_year: 6,
    RepeatFrequency.yearly: 12,
}


def start_of_period(day: date, freq: RepeatFrequency) -> date:
    """Snap ``day`` to the first day of the ``freq`` period containing it.

    Weeks start on Monday. Half-years start on 1 January for January through
    June and on 1 July for July through December.
    """
    if freq == RepeatFrequency.daily:
        return day
    if freq == RepeatFrequency.weekly:
        return day - timedelta(days=day.weekday())
    if freq == RepeatFrequency.monthly:
        return day.replace(day=1)
    if freq == RepeatFrequency.quarterly:
        return date(day.year, ((day.month - 1) // 3) * 3 + 1, 1)
    if freq == RepeatFrequency.half_year:
        if day.month >= 7:
            return date(day.year, 7, 1)
        return date(day.year, 1, 1)
    if freq == RepeatFrequency.yearly:
        return date(day.year, 1, 1)
    raise ValueError(f"Unsupported period: {freq}")


def end_of_period(day: date, freq: RepeatFrequency) -> date:
    start = start_of_period(day, freq)
    if freq == RepeatFrequency.daily:
        return start
    if freq == RepeatFrequency.weekly:
        return start + timedelta(days=6)
    return _add_months(start, _MONTHS_PER_PERIOD[freq]) - date.resolution


class ChartGranularity(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    year = "year"


_GRANULARITY_FREQUENCY = {
    ChartGranularity.day: RepeatFrequency.daily,
    ChartGranularity.week: RepeatFrequency.weekly,
    ChartGranularity.month: RepeatFrequency.monthly,
    ChartGranularity.year: RepeatFrequency.yearly,
}


def diff_in_months(start: date, end: date) -> int:
    """Whole calendar months between two dates, ignoring direction."""
    if start > end:
        start, end = end, start
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def preferred_granularity(start: date, end: date) -> ChartGranularity:
    months = diff_in_months(start, end)
    if months > 12:
        return ChartGranularity.year
    if months > 1:
        return ChartGranularity.month
    return ChartGranularity.day


def period_key(day: date, granularity: ChartGranularity) -> str:
    if granularity == ChartGranularity.day:
        return day.isoformat()
    if granularity == ChartGranularity.week:
        iso = day.isocalendar()
        return f"{iso[0]:04d}-W{iso[1]:02d}"
    if granularity == ChartGranularity.month:
        return f"{day.year:04d}-{day.month:02d}"
    return f"{day.year:04d}"


def period_label(day: date, granularity: ChartGranularity) -> str:
    if granularity == ChartGranularity.day:
        return f"{day.day} {day.strftime('%B %Y')}"
    if granularity == ChartGranularity.week:
        iso = day.isocalendar()
        return f"Week {iso[1]}, {iso[0]}"
    if granularity == ChartGranularity.month:
        return day.strftime("%B %Y")
    return str(day.year)


def iter_subperiods(
    start: date, end: date, granularity: ChartGranularity
) -> Iterator[tuple[date, date]]:
    """Yield consecutive ranges that cover ``start``..``end`` exactly."""
    if start > end:
        raise ValueError("Start date must be before end date")
    freq = _GRANULARITY_FREQUENCY[granularity]
    current = start
    while current <= end:
        current_end = min(end_of_period(current, freq), end)
        yield current, current_end
        current = current_end + date.resolution


def local_today() -> date:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).date()
