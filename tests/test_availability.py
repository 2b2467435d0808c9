# tests/test_availability.py

from datetime import timedelta

import pytest

from inkbook.availability import (
    free_gaps,
    get_availability_for_date_range,
    get_available_slots,
    get_book_hours,
    get_earliest_slot,
    has_availability_on_date,
)
from inkbook.errors import ValidationFailure
from inkbook.models import AvailabilityException, TimeBlock
from inkbook.schemas import Slot

from conftest import make_book, next_weekday

MONDAY = next_weekday(0)
SATURDAY = next_weekday(5)


def add_block(session, book_id, day, start, end, kind="BLOCKED_OFF"):
    block = TimeBlock(book_id=book_id, date=day, start_time=start, end_time=end, kind=kind)
    session.add(block)
    session.commit()
    return block


def test_free_gaps_walks_sorted_blocks():
    assert free_gaps(540, 1020, [(720, 780)], 120) == [(540, 720), (780, 1020)]
    assert free_gaps(540, 1020, [(720, 780)], 300) == []
    # overlapping and out-of-range blocks
    assert free_gaps(540, 1020, [(480, 600), (590, 660), (1020, 1080)], 60) == [(660, 1020)]


def test_monday_with_lunch_block(session, book):
    assert get_available_slots(session, book.id, MONDAY, 120) == [Slot(start="09:00", end="17:00")]

    add_block(session, book.id, MONDAY, "12:00", "13:00")

    assert get_available_slots(session, book.id, MONDAY, 120) == [
        Slot(start="09:00", end="12:00"),
        Slot(start="13:00", end="17:00"),
    ]
    assert get_available_slots(session, book.id, MONDAY, 300) == []


def test_closed_weekday_has_no_slots(session, book):
    assert get_book_hours(book, SATURDAY) is None
    assert get_available_slots(session, book.id, SATURDAY, 60) == []


def test_missing_book_has_no_slots(session):
    assert get_available_slots(session, 999, MONDAY, 60) == []


def test_inactive_or_out_of_range_book(session):
    inactive = make_book(session, is_active=False)
    assert get_available_slots(session, inactive.id, MONDAY, 60) == []

    closed = make_book(session, end_date=MONDAY - timedelta(days=1))
    assert get_available_slots(session, closed.id, MONDAY, 60) == []

    not_yet = make_book(session, start_date=MONDAY + timedelta(days=1))
    assert get_available_slots(session, not_yet.id, MONDAY, 60) == []


def test_unavailable_exception_closes_the_day(session, book):
    session.add(AvailabilityException(date=MONDAY, kind="UNAVAILABLE", reason="Convention"))
    session.commit()
    assert get_available_slots(session, book.id, MONDAY, 30) == []


def test_custom_hours_replace_weekday_hours(session, book):
    session.add(AvailabilityException(date=SATURDAY, kind="CUSTOM_HOURS", custom_start="10:00", custom_end="14:00"))
    session.commit()
    assert get_available_slots(session, book.id, SATURDAY, 60) == [Slot(start="10:00", end="14:00")]


def test_custom_hours_do_not_reopen_inactive_book(session):
    inactive = make_book(session, is_active=False)
    session.add(AvailabilityException(date=MONDAY, kind="CUSTOM_HOURS", custom_start="10:00", custom_end="14:00"))
    session.commit()
    assert get_available_slots(session, inactive.id, MONDAY, 60) == []


def test_studio_wide_block_occupies_every_book(session, book, flash_book):
    add_block(session, None, MONDAY, "09:00", "13:00")
    assert get_available_slots(session, book.id, MONDAY, 60) == [Slot(start="13:00", end="17:00")]
    assert get_available_slots(session, flash_book.id, MONDAY, 60) == [Slot(start="13:00", end="17:00")]


def test_other_books_blocks_are_ignored(session, book, flash_book):
    add_block(session, flash_book.id, MONDAY, "09:00", "17:00")
    assert get_available_slots(session, book.id, MONDAY, 60) == [Slot(start="09:00", end="17:00")]


def test_back_to_back_blocks_leave_no_gap(session, book):
    add_block(session, book.id, MONDAY, "09:00", "11:00")
    add_block(session, book.id, MONDAY, "11:00", "13:00")
    assert get_available_slots(session, book.id, MONDAY, 60) == [Slot(start="13:00", end="17:00")]


def test_earliest_slot_is_trimmed_to_duration(session, book):
    add_block(session, book.id, MONDAY, "09:00", "10:00")
    assert get_earliest_slot(session, book.id, MONDAY, 90) == Slot(start="10:00", end="11:30")
    assert get_earliest_slot(session, book.id, SATURDAY, 90) is None


def test_non_positive_duration_is_rejected(session, book):
    with pytest.raises(ValidationFailure):
        get_available_slots(session, book.id, MONDAY, 0)


def test_has_availability_and_date_range(session, book):
    add_block(session, book.id, MONDAY, "09:00", "16:45")
    assert not has_availability_on_date(session, book.id, MONDAY)
    assert has_availability_on_date(session, book.id, MONDAY, minimum=15)

    week = get_availability_for_date_range(session, book.id, MONDAY, MONDAY + timedelta(days=6), 120)
    assert len(week) == 7
    assert week[MONDAY] is False
    assert week[MONDAY + timedelta(days=1)] is True
    assert week[MONDAY + timedelta(days=5)] is False
