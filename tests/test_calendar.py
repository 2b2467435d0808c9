# tests/test_calendar.py

from datetime import date

import pytest

from inkbook.calendar import (
    Weekday,
    daterange,
    hours_for,
    minutes_to_time,
    month_bounds,
    normalize_hours,
    overlaps,
    time_to_minutes,
    weekday_name,
)


def test_time_conversions():
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("09:30") == 570
    assert time_to_minutes("23:59") == 1439
    assert minutes_to_time(570) == "09:30"
    assert minutes_to_time(0) == "00:00"


@pytest.mark.parametrize("bad", ["9:00", "24:00", "12:60", "noon", "", None])
def test_time_to_minutes_rejects_malformed(bad):
    with pytest.raises(ValueError):
        time_to_minutes(bad)


def test_minutes_to_time_rejects_out_of_range():
    with pytest.raises(ValueError):
        minutes_to_time(24 * 60)
    with pytest.raises(ValueError):
        minutes_to_time(-1)


def test_weekday_name():
    assert weekday_name(date(2026, 3, 2)) == Weekday.monday
    assert weekday_name(date(2026, 3, 8)) == Weekday.sunday


def test_overlaps_is_half_open():
    assert overlaps(540, 600, 570, 630)
    assert not overlaps(540, 600, 600, 660)
    assert not overlaps(600, 660, 540, 600)
    assert overlaps("10:00", "12:00", "11:00", "11:30")


def test_hours_for_missing_day_is_closed():
    weekly = {"monday": {"start": "09:00", "end": "17:00"}}
    assert hours_for(weekly, date(2026, 3, 2)) == ("09:00", "17:00")
    assert hours_for(weekly, date(2026, 3, 3)) is None
    assert hours_for({}, date(2026, 3, 2)) is None


def test_normalize_hours_drops_closed_days_and_checks_order():
    assert normalize_hours({"Monday": {"start": "10:00", "end": "18:00"}, "tuesday": None}) == {
        "monday": {"start": "10:00", "end": "18:00"}
    }
    with pytest.raises(ValueError):
        normalize_hours({"monday": {"start": "18:00", "end": "10:00"}})
    with pytest.raises(ValueError):
        normalize_hours({"funday": {"start": "10:00", "end": "18:00"}})


def test_daterange_is_inclusive():
    days = list(daterange(date(2026, 2, 27), date(2026, 3, 2)))
    assert days == [date(2026, 2, 27), date(2026, 2, 28), date(2026, 3, 1), date(2026, 3, 2)]
    assert list(daterange(date(2026, 3, 2), date(2026, 3, 1))) == []


def test_month_bounds():
    assert month_bounds("2026-02") == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_bounds("2026-12") == (date(2026, 12, 1), date(2026, 12, 31))
    with pytest.raises(ValueError):
        month_bounds("2026-13")
    with pytest.raises(ValueError):
        month_bounds("March")
