from datetime import date

import pytest

from models import RepeatFrequency
from periods import (
    ChartGranularity,
    end_of_period,
    iter_subperiods,
    period_key,
    period_label,
    preferred_granularity,
    resolve_period,
    start_of_period,
)


@pytest.mark.parametrize(
    ("day", "start", "end"),
    [
        (date(2017, 1, 1), date(2017, 1, 1), date(2017, 6, 30)),
        (date(2017, 3, 15), date(2017, 1, 1), date(2017, 6, 30)),
        (date(2017, 6, 30), date(2017, 1, 1), date(2017, 6, 30)),
        (date(2017, 7, 1), date(2017, 7, 1), date(2017, 12, 31)),
        (date(2017, 11, 20), date(2017, 7, 1), date(2017, 12, 31)),
    ],
)
def test_half_year_snaps_to_january_or_july(day, start, end) -> None:
    assert start_of_period(day, RepeatFrequency.half_year) == start
    assert end_of_period(day, RepeatFrequency.half_year) == end


def test_other_frequencies_snap_to_their_period() -> None:
    day = date(2017, 5, 20)  # Saturday
    assert start_of_period(day, RepeatFrequency.daily) == day
    assert end_of_period(day, RepeatFrequency.daily) == day
    assert start_of_period(day, RepeatFrequency.weekly) == date(2017, 5, 15)
    assert end_of_period(day, RepeatFrequency.weekly) == date(2017, 5, 21)
    assert start_of_period(day, RepeatFrequency.monthly) == date(2017, 5, 1)
    assert end_of_period(day, RepeatFrequency.monthly) == date(2017, 5, 31)
    assert start_of_period(day, RepeatFrequency.quarterly) == date(2017, 4, 1)
    assert end_of_period(day, RepeatFrequency.quarterly) == date(2017, 6, 30)
    assert start_of_period(day, RepeatFrequency.yearly) == date(2017, 1, 1)
    assert end_of_period(day, RepeatFrequency.yearly) == date(2017, 12, 31)


def test_end_of_month_handles_leap_february() -> None:
    assert end_of_period(date(2016, 2, 10), RepeatFrequency.monthly) == date(2016, 2, 29)
    assert end_of_period(date(2017, 2, 10), RepeatFrequency.monthly) == date(2017, 2, 28)


@pytest.mark.parametrize(
    ("start", "end", "expected"),
    [
        (date(2017, 1, 1), date(2017, 1, 31), ChartGranularity.day),
        (date(2017, 1, 1), date(2017, 2, 28), ChartGranularity.day),
        (date(2017, 1, 1), date(2017, 3, 31), ChartGranularity.month),
        (date(2017, 1, 1), date(2018, 1, 1), ChartGranularity.month),
        (date(2016, 1, 1), date(2017, 12, 31), ChartGranularity.year),
    ],
)
def test_preferred_granularity(start, end, expected) -> None:
    assert preferred_granularity(start, end) == expected


def test_subperiods_cover_range_exactly() -> None:
    ranges = list(
        iter_subperiods(date(2017, 1, 15), date(2017, 3, 10), ChartGranularity.month)
    )
    assert ranges == [
        (date(2017, 1, 15), date(2017, 1, 31)),
        (date(2017, 2, 1), date(2017, 2, 28)),
        (date(2017, 3, 1), date(2017, 3, 10)),
    ]


def test_weekly_subperiods_start_mid_week() -> None:
    ranges = list(
        iter_subperiods(date(2017, 1, 4), date(2017, 1, 16), ChartGranularity.week)
    )
    assert ranges == [
        (date(2017, 1, 4), date(2017, 1, 8)),
        (date(2017, 1, 9), date(2017, 1, 15)),
        (date(2017, 1, 16), date(2017, 1, 16)),
    ]


def test_subperiods_reject_inverted_range() -> None:
    with pytest.raises(ValueError):
        list(iter_subperiods(date(2017, 2, 1), date(2017, 1, 1), ChartGranularity.day))


def test_period_keys_and_labels() -> None:
    day = date(2017, 1, 5)
    assert period_key(day, ChartGranularity.day) == "2017-01-05"
    assert period_key(day, ChartGranularity.week) == "2017-W01"
    assert period_key(day, ChartGranularity.month) == "2017-01"
    assert period_key(day, ChartGranularity.year) == "2017"
    assert period_label(day, ChartGranularity.day) == "5 January 2017"
    assert period_label(day, ChartGranularity.week) == "Week 1, 2017"
    assert period_label(day, ChartGranularity.month) == "January 2017"
    assert period_label(day, ChartGranularity.year) == "2017"


def test_resolve_period_slugs() -> None:
    today = date(2017, 3, 15)
    assert resolve_period(None, None, None, today=today).start == date(1970, 1, 1)
    last_month = resolve_period("last_month", None, None, today=today)
    assert (last_month.start, last_month.end) == (date(2017, 2, 1), date(2017, 2, 28))
    this_month = resolve_period("this_month", None, None, today=today)
    assert (this_month.start, this_month.end) == (date(2017, 3, 1), date(2017, 3, 31))
    custom = resolve_period("custom", "2017-01-01", "2017-01-31", today=today)
    assert custom.end == date(2017, 1, 31)
    with pytest.raises(ValueError):
        resolve_period("custom", "2017-02-01", "2017-01-01", today=today)
