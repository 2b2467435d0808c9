# inkbook/outbound.py
"""
Outbound collaborators of the booking core.

Notification delivery and the external calendar mirror live outside this
service. The core only talks to them through ``Notifier`` and
``CalendarMirror`` and only after its own transaction has committed: calls are
queued on an ``Outbox`` and the router drains it as a FastAPI background task.
A failing collaborator is logged and never affects the booking.

Reminder rows (``ScheduledNotification``) are the exception: they are plain
bookkeeping written inside the booking transaction, for an external dispatcher
to pick up.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from sqlmodel import Session, select

from . import db
from .config import studio_to_utc
from .models import ScheduledNotification, TimeBlock, utcnow

logger = logging.getLogger(__name__)

# Notification kinds sent right away
BOOKING_APPROVED = "BOOKING_APPROVED"
DEPOSIT_REQUEST = "DEPOSIT_REQUEST"
DEPOSIT_PAID = "DEPOSIT_PAID"
PAYMENT_REQUEST = "PAYMENT_REQUEST"

# (kind, offset from appointment start, fixed time of day or None, channels)
REMINDER_SCHEDULE: List[Tuple[str, timedelta, Optional[time], Tuple[str, ...]]] = [
    ("REMINDER_1WEEK", timedelta(days=-7), time(9, 0), ("EMAIL",)),
    ("REMINDER_1DAY", timedelta(days=-1), time(9, 0), ("EMAIL", "SMS")),
    ("REMINDER_2HOURS", timedelta(hours=-2), None, ("SMS",)),
    ("AFTERCARE_6WEEKS", timedelta(weeks=6), time(10, 0), ("EMAIL",)),
    ("TOUCHUP_6MONTHS", timedelta(days=180), time(10, 0), ("EMAIL",)),
]


class Notifier(Protocol):
    def notify(self, recipient: str, kind: str, params: Dict[str, Any]) -> None:
        ...


class CalendarMirror(Protocol):
    def upsert(self, block_id: int, day: date, start: str, end: str, description: str) -> Optional[str]:
        """Mirror an occupied interval, returning the external event id if any."""

    def remove(self, event_id: str) -> None:
        ...


class LoggingNotifier:
    def notify(self, recipient: str, kind: str, params: Dict[str, Any]) -> None:
        logger.info("Notification %s for %s: %s", kind, recipient, params)


class LoggingCalendarMirror:
    def upsert(self, block_id: int, day: date, start: str, end: str, description: str) -> Optional[str]:
        logger.info("Calendar mirror: block %s on %s %s-%s (%s)", block_id, day, start, end, description)
        return None

    def remove(self, event_id: str) -> None:
        logger.info("Calendar mirror: remove event %s", event_id)


_notifier: Notifier = LoggingNotifier()
_calendar_mirror: CalendarMirror = LoggingCalendarMirror()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def get_calendar_mirror() -> CalendarMirror:
    return _calendar_mirror


def set_calendar_mirror(mirror: CalendarMirror) -> None:
    global _calendar_mirror
    _calendar_mirror = mirror


class Outbox:
    """Side effects collected during a transaction, run once it has committed."""

    def __init__(self) -> None:
        self._tasks: List[Tuple[str, Callable[..., Any], tuple, dict]] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def add(self, description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._tasks.append((description, fn, args, kwargs))

    def clear(self) -> None:
        self._tasks = []

    def extend(self, other: "Outbox") -> None:
        self._tasks.extend(other._tasks)
        other.clear()

    def drain(self) -> None:
        tasks, self._tasks = self._tasks, []
        for description, fn, args, kwargs in tasks:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Outbound task failed: %s", description)


def queue_notification(outbox: Outbox, recipient: Optional[str], kind: str, params: Dict[str, Any]) -> None:
    if not recipient:
        logger.warning("No recipient for %s notification, skipping", kind)
        return
    outbox.add(f"notify {kind}", get_notifier().notify, recipient, kind, params)


def mirror_time_block(block_id: int, day: date, start: str, end: str, description: str) -> None:
    event_id = get_calendar_mirror().upsert(block_id, day, start, end, description)
    if not event_id:
        return
    with Session(db.engine) as session:
        block = session.get(TimeBlock, block_id)
        if block is None:
            # cancelled before the mirror answered
            get_calendar_mirror().remove(event_id)
            return
        block.calendar_event_id = event_id
        session.add(block)
        session.commit()


def queue_calendar_upsert(outbox: Outbox, block: TimeBlock, description: str) -> None:
    outbox.add(
        f"calendar upsert block {block.id}",
        mirror_time_block,
        block.id,
        block.date,
        block.start_time,
        block.end_time,
        description,
    )


def queue_calendar_remove(outbox: Outbox, event_id: Optional[str]) -> None:
    if event_id:
        outbox.add(f"calendar remove {event_id}", get_calendar_mirror().remove, event_id)


def cancel_pending_notifications(session: Session, booking_id: int) -> int:
    rows = pending_notifications(session, booking_id)
    for row in rows:
        session.delete(row)
    return len(rows)


def schedule_booking_notifications(
    session: Session,
    booking_id: int,
    appointment_at: datetime,
    now: Optional[datetime] = None,
) -> List[ScheduledNotification]:
    """
    Replace the booking's pending reminders with ones derived from
    ``appointment_at``, a naive wall-clock time in the studio timezone.
    Reminders are stored in UTC; ones already in the past are skipped.
    """
    now = now or utcnow()
    cancel_pending_notifications(session, booking_id)

    rows = []
    for kind, offset, at, channels in REMINDER_SCHEDULE:
        when = appointment_at + offset
        if at is not None:
            when = datetime.combine(when.date(), at)
        when = studio_to_utc(when)
        if when <= now:
            continue
        for channel in channels:
            row = ScheduledNotification(
                booking_id=booking_id,
                kind=kind,
                channel=channel,
                scheduled_for=when,
            )
            session.add(row)
            rows.append(row)
    return rows


def pending_notifications(session: Session, booking_id: int) -> List[ScheduledNotification]:
    return list(
        session.exec(
            select(ScheduledNotification)
            .where(ScheduledNotification.booking_id == booking_id)
            .where(ScheduledNotification.status == "PENDING")
            .order_by(ScheduledNotification.scheduled_for)
        ).all()
    )
