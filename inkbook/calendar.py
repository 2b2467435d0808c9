# inkbook/calendar.py
"""
Pure time-of-day and date helpers used by the availability engine.

Times are "HH:MM" strings, zero-padded, so they also compare correctly as
strings (the overlap query relies on that). Malformed input raises ValueError.
"""

import re
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Weekday(str, Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"


# date.weekday(): 0 = Monday
WEEKDAYS = list(Weekday)


def time_to_minutes(value: str) -> int:
    match = _HHMM.match(value or "")
    if match is None:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    if not 0 <= minutes < 24 * 60:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_name(day: date) -> Weekday:
    return WEEKDAYS[day.weekday()]


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    # half-open: back-to-back intervals do not overlap
    return a_start < b_end and b_start < a_end


def hours_for(weekly: Mapping[str, Mapping[str, str]], day: date) -> Optional[Tuple[str, str]]:
    """Open/close times configured for the weekday of ``day``, or None if closed."""
    entry = weekly.get(weekday_name(day).value) if weekly else None
    if not entry:
        return None
    start, end = entry.get("start"), entry.get("end")
    if not start or not end:
        return None
    return start, end


def normalize_hours(weekly: Mapping[str, Mapping[str, str]]) -> Dict[str, Dict[str, str]]:
    """Validate a weekly schedule and drop closed days."""
    result: Dict[str, Dict[str, str]] = {}
    for key, entry in (weekly or {}).items():
        day = Weekday(key.lower())
        if not entry:
            continue
        start, end = entry["start"], entry["end"]
        if time_to_minutes(start) >= time_to_minutes(end):
            raise ValueError(f"{day.value}: start must be before end")
        result[day.value] = {"start": start, "end": end}
    return result


def daterange(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def month_bounds(month: str) -> Tuple[date, date]:
    """'2026-03' -> (2026-03-01, 2026-03-31)"""
    match = re.match(r"^(\d{4})-(\d{2})$", month or "")
    if match is None:
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
    year, number = int(match.group(1)), int(match.group(2))
    first = date(year, number, 1)
    if number == 12:
        following = date(year + 1, 1, 1)
    else:
        following = date(year, number + 1, 1)
    return first, following - timedelta(days=1)
