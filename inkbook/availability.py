# inkbook/availability.py
"""
Availability engine.

A book's bookable windows on a date are its base hours (weekday hours, or the
day's custom-hours exception) minus every occupied time block on that date.
Nothing is cached: data may change between calls, so every query reads the
current blocks.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlmodel import Session, select

from .calendar import daterange, hours_for, minutes_to_time, time_to_minutes
from .db import translate_storage_errors
from .errors import ValidationFailure
from .models import AvailabilityException, Book, TimeBlock
from .schemas import ExceptionKind, Slot

logger = logging.getLogger(__name__)


def book_in_season(book: Optional[Book], day: date) -> bool:
    """Active, and ``day`` falls inside the book's open/close dates."""
    if book is None or not book.is_active:
        return False
    if book.start_date and day < book.start_date:
        return False
    if book.end_date and day > book.end_date:
        return False
    return True


def get_book_hours(book: Optional[Book], day: date) -> Optional[Slot]:
    if not book_in_season(book, day):
        return None
    hours = hours_for(book.hours, day)
    if hours is None:
        return None
    return Slot(start=hours[0], end=hours[1])


def get_exception(session: Session, day: date) -> Optional[AvailabilityException]:
    return session.exec(
        select(AvailabilityException).where(AvailabilityException.date == day)
    ).first()


def blocks_for_book(book_id: int, day: date):
    """Blocks that occupy ``book_id`` on ``day``: its own plus studio-wide ones."""
    return (
        select(TimeBlock)
        .where(TimeBlock.date == day)
        .where(or_(TimeBlock.book_id == book_id, TimeBlock.book_id.is_(None)))
    )


def occupied_blocks(session: Session, book_id: int, day: date) -> List[TimeBlock]:
    return list(session.exec(blocks_for_book(book_id, day).order_by(TimeBlock.start_time)).all())


def free_gaps(
    base_start: int,
    base_end: int,
    blocked: Iterable[Tuple[int, int]],
    duration: int,
) -> List[Tuple[int, int]]:
    """
    Maximal gaps of at least ``duration`` minutes left in [base_start, base_end)
    after removing ``blocked`` ranges, which must be sorted by start.
    """
    gaps = []
    cursor = base_start
    for start, end in blocked:
        if end <= cursor:
            continue
        if start >= base_end:
            break
        gap_end = min(start, base_end)
        if gap_end - cursor >= duration:
            gaps.append((cursor, gap_end))
        cursor = max(cursor, end)

    if base_end - cursor >= duration:
        gaps.append((cursor, base_end))
    return gaps


def base_interval(session: Session, book: Optional[Book], day: date) -> Optional[Slot]:
    exception = get_exception(session, day)
    if exception is not None and exception.kind == ExceptionKind.UNAVAILABLE.value:
        return None

    if exception is not None and exception.kind == ExceptionKind.CUSTOM_HOURS.value:
        # replaces the weekday hours but never reopens an inactive book
        if not book_in_season(book, day):
            return None
        return Slot(start=exception.custom_start, end=exception.custom_end)
    return get_book_hours(book, day)


@translate_storage_errors
def get_available_slots(session: Session, book_id: int, day: date, duration: int) -> List[Slot]:
    if duration <= 0:
        raise ValidationFailure("duration must be a positive number of minutes")

    base = base_interval(session, session.get(Book, book_id), day)
    if base is None:
        return []

    blocked = [
        (time_to_minutes(b.start_time), time_to_minutes(b.end_time))
        for b in occupied_blocks(session, book_id, day)
    ]
    gaps = free_gaps(time_to_minutes(base.start), time_to_minutes(base.end), blocked, duration)
    return [Slot(start=minutes_to_time(start), end=minutes_to_time(end)) for start, end in gaps]


def get_earliest_slot(session: Session, book_id: int, day: date, duration: int) -> Optional[Slot]:
    """First open window on ``day``, trimmed to exactly ``duration`` minutes."""
    slots = get_available_slots(session, book_id, day, duration)
    if not slots:
        return None
    start = time_to_minutes(slots[0].start)
    return Slot(start=slots[0].start, end=minutes_to_time(start + duration))


def has_availability_on_date(session: Session, book_id: int, day: date, minimum: int = 30) -> bool:
    return len(get_available_slots(session, book_id, day, minimum)) > 0


def get_availability_for_date_range(
    session: Session,
    book_id: int,
    start: date,
    end: date,
    duration: int,
) -> Dict[date, bool]:
    return {day: has_availability_on_date(session, book_id, day, duration) for day in daterange(start, end)}


def within_hours(session: Session, book: Optional[Book], day: date, start: str, end: str) -> bool:
    """Whether [start, end) lies inside the book's open hours on ``day``."""
    base = base_interval(session, book, day)
    if base is None:
        return False
    return base.start <= start and end <= base.end
