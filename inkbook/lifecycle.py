# inkbook/lifecycle.py
"""
Booking status state machine.

``TRANSITIONS`` is the single source of truth for which status changes exist
and who may ask for them. ``transition`` is the only entry point that changes
a booking's status; it re-reads the booking inside a serializable transaction,
checks the table, and runs the side effect for the target status. Outbound
calls queued by a side effect only reach the caller's outbox once the
transaction has committed.
"""

import logging
from datetime import datetime, time
from typing import Any, Callable, Dict, FrozenSet, NamedTuple, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .availability import within_hours
from .calendar import time_to_minutes
from .config import get_settings
from .db import SerializationConflict, run_serializable, translate_storage_errors
from .errors import Conflict, Forbidden, IllegalTransition, InvalidStatus, NotFound, SlotTaken, ValidationFailure
from .models import Book, Booking, Message, TimeBlock, User, utcnow
from .outbound import (
    BOOKING_APPROVED,
    DEPOSIT_PAID,
    DEPOSIT_REQUEST,
    Outbox,
    cancel_pending_notifications,
    queue_calendar_remove,
    queue_calendar_upsert,
    queue_notification,
    schedule_booking_notifications,
)
from .reservations import occupy, release_claim, suggest_alternative, validate_interval
from .schemas import (
    ActorRole,
    ApprovePayload,
    BookingCreate,
    BookingStatus,
    BookingUpdate,
    BookType,
    DeclinePayload,
    InfoRequestPayload,
    SchedulePayload,
)

logger = logging.getLogger(__name__)

S = BookingStatus
ARTIST = frozenset({ActorRole.artist})
CLIENT = frozenset({ActorRole.client})
SYSTEM = frozenset({ActorRole.system})
EITHER_PARTY = frozenset({ActorRole.artist, ActorRole.client})

EDITABLE = frozenset({S.PENDING, S.INFO_REQUESTED})

EDITABLE_FIELDS = ("description", "size", "placement", "is_first_tattoo", "preferred_dates", "medical_notes")

P = TypeVar("P", bound=BaseModel)


class Actor(BaseModel):
    role: ActorRole
    id: Optional[int] = None


SYSTEM_ACTOR = Actor(role=ActorRole.system)


def _parse(model: Type[P], payload: Optional[Dict[str, Any]]) -> P:
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        raise ValidationFailure(
            "Invalid transition payload",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def _client_email(session: Session, booking: Booking) -> Optional[str]:
    client = session.get(User, booking.client_id)
    return client.email if client else None


# --- side effects, run inside the transition's transaction ------------------

def _approve(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    data = _parse(ApprovePayload, payload)
    if data.book_id is not None:
        book = session.get(Book, data.book_id)
        if book is None:
            raise NotFound("Book not found")
        booking.book_id = book.id
    booking.duration = data.duration or get_settings().default_duration_minutes
    booking.deposit_amount_cents = data.deposit_amount_cents
    booking.total_amount_cents = data.total_amount_cents
    booking.artist_notes = data.artist_notes
    booking.chat_enabled = True
    booking.status = S.APPROVED.value

    queue_notification(
        outbox,
        _client_email(session, booking),
        BOOKING_APPROVED,
        {
            "booking_id": booking.id,
            "duration": booking.duration,
            "deposit_amount_cents": booking.deposit_amount_cents,
        },
    )


def _request_info(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    data = _parse(InfoRequestPayload, payload)
    booking.chat_enabled = True
    booking.status = S.INFO_REQUESTED.value
    session.add(Message(booking_id=booking.id, sender_id=actor.id, content=data.artist_notes))


def _decline(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    data = _parse(DeclinePayload, payload)
    booking.decline_reason = data.reason
    booking.status = S.DECLINED.value


def _schedule(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    data = _parse(SchedulePayload, payload)
    if booking.book_id is None:
        raise ValidationFailure("No book assigned to this booking")
    if not booking.duration:
        raise ValidationFailure("Booking duration not set")
    if validate_interval(data.start_time, data.end_time) != booking.duration:
        raise ValidationFailure(f"The appointment must last {booking.duration} minutes")
    if not within_hours(session, session.get(Book, booking.book_id), data.date, data.start_time, data.end_time):
        raise ValidationFailure("The studio is not open at that time")

    block = occupy(session, booking.book_id, data.date, data.start_time, data.end_time, booking_id=booking.id)

    booking.appointment_date = data.date
    booking.scheduled_start = data.start_time
    booking.scheduled_end = data.end_time
    booking.status = S.AWAITING_DEPOSIT.value

    start_minutes = time_to_minutes(data.start_time)
    appointment_at = datetime.combine(data.date, time(start_minutes // 60, start_minutes % 60))
    schedule_booking_notifications(session, booking.id, appointment_at)

    queue_calendar_upsert(outbox, block, booking.description or f"Booking {booking.id}")
    queue_notification(
        outbox,
        _client_email(session, booking),
        DEPOSIT_REQUEST,
        {
            "booking_id": booking.id,
            "date": data.date.isoformat(),
            "start": data.start_time,
            "deposit_amount_cents": booking.deposit_amount_cents,
        },
    )


def _confirm(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    payload = payload or {}
    booking.deposit_paid_at = utcnow()
    booking.payment_intent_id = payload.get("payment_intent_id")
    booking.status = S.CONFIRMED.value

    queue_notification(
        outbox,
        _client_email(session, booking),
        DEPOSIT_PAID,
        {"booking_id": booking.id, "date": booking.appointment_date.isoformat() if booking.appointment_date else None},
    )


def _complete(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    booking.status = S.COMPLETED.value


def _reopen(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    booking.status = S.CONFIRMED.value


def _cancel(session: Session, booking: Booking, actor: Actor, payload, outbox: Outbox) -> None:
    block = session.exec(select(TimeBlock).where(TimeBlock.booking_id == booking.id)).first()
    if block is not None:
        queue_calendar_remove(outbox, block.calendar_event_id)
        session.delete(block)
    release_claim(session, booking)
    dropped = cancel_pending_notifications(session, booking.id)
    booking.status = S.CANCELLED.value
    logger.info("Booking %s cancelled by %s, %d reminder(s) dropped", booking.id, actor.role.value, dropped)


Effect = Callable[[Session, Booking, Actor, Optional[Dict[str, Any]], Outbox], None]


class Rule(NamedTuple):
    roles: FrozenSet[ActorRole]
    effect: Effect


TRANSITIONS: Dict[Tuple[BookingStatus, BookingStatus], Rule] = {
    (S.PENDING, S.APPROVED): Rule(ARTIST, _approve),
    (S.INFO_REQUESTED, S.APPROVED): Rule(ARTIST, _approve),
    (S.PENDING, S.INFO_REQUESTED): Rule(ARTIST, _request_info),
    (S.INFO_REQUESTED, S.INFO_REQUESTED): Rule(ARTIST, _request_info),
    (S.PENDING, S.DECLINED): Rule(ARTIST, _decline),
    (S.INFO_REQUESTED, S.DECLINED): Rule(ARTIST, _decline),
    (S.APPROVED, S.AWAITING_DEPOSIT): Rule(CLIENT, _schedule),
    (S.AWAITING_DEPOSIT, S.CONFIRMED): Rule(SYSTEM, _confirm),
    (S.CONFIRMED, S.COMPLETED): Rule(ARTIST, _complete),
    (S.COMPLETED, S.CONFIRMED): Rule(ARTIST, _reopen),
    (S.PENDING, S.CANCELLED): Rule(EITHER_PARTY, _cancel),
    (S.INFO_REQUESTED, S.CANCELLED): Rule(EITHER_PARTY, _cancel),
    (S.APPROVED, S.CANCELLED): Rule(EITHER_PARTY, _cancel),
    (S.AWAITING_DEPOSIT, S.CANCELLED): Rule(EITHER_PARTY, _cancel),
    (S.CONFIRMED, S.CANCELLED): Rule(EITHER_PARTY, _cancel),
}


def check_transition(booking: Booking, target: BookingStatus, actor: Actor) -> Rule:
    if actor.role == ActorRole.client and booking.client_id != actor.id:
        raise Forbidden("Forbidden")
    current = BookingStatus(booking.status)
    rule = TRANSITIONS.get((current, target))
    if rule is None:
        raise IllegalTransition(current.value, target.value)
    if actor.role not in rule.roles:
        raise Forbidden(f"{actor.role.value} cannot move a booking to {target.value}")
    return rule


def apply_transition(
    session: Session,
    booking: Booking,
    target: BookingStatus,
    actor: Actor,
    payload: Optional[Dict[str, Any]],
    outbox: Outbox,
) -> Booking:
    """
    Check and apply one transition inside the caller's transaction. Does not
    commit; the payment ledger uses this to confirm a deposit atomically with
    recording the event.
    """
    rule = check_transition(booking, target, actor)
    rule.effect(session, booking, actor, payload, outbox)
    booking.updated_at = utcnow()
    session.add(booking)
    session.flush()
    return booking


@translate_storage_errors
def transition(
    session: Session,
    booking_id: int,
    target: BookingStatus,
    actor: Actor,
    payload: Optional[Dict[str, Any]] = None,
    outbox: Optional[Outbox] = None,
) -> Booking:
    target = BookingStatus(target)
    pending = Outbox()

    def work(s: Session) -> Booking:
        pending.clear()
        booking = s.get(Booking, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return apply_transition(s, booking, target, actor, payload, pending)

    try:
        booking = run_serializable(session, work)
    except SlotTaken:
        raise SlotTaken(_alternative_for(session, booking_id, payload)) from None
    except SerializationConflict:
        if target == S.AWAITING_DEPOSIT:
            raise SlotTaken(_alternative_for(session, booking_id, payload)) from None
        raise Conflict("The booking was changed by someone else, please retry") from None

    if outbox is not None:
        outbox.extend(pending)
    session.refresh(booking)
    logger.info("Booking %s moved to %s by %s", booking.id, booking.status, actor.role.value)
    return booking


def _alternative_for(session: Session, booking_id: int, payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Best effort: a SlotTaken without an alternative beats a storage error."""
    try:
        booking = session.get(Booking, booking_id)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("Could not look up an alternative for booking %s: %s", booking_id, exc)
        return None
    if booking is None:
        return None
    data = SchedulePayload.model_validate(payload)
    slot = suggest_alternative(session, booking.book_id, data.date, booking.duration)
    return slot.model_dump() if slot else None


# --- non-status operations ---------------------------------------------------

@translate_storage_errors
def create_custom_booking(session: Session, client: Actor, data: BookingCreate) -> Booking:
    if client.role != ActorRole.client:
        raise Forbidden("Only clients can create bookings")
    if data.book_id is not None:
        book = session.get(Book, data.book_id)
        if book is None:
            raise NotFound("Book not found")
        if book.type != BookType.CUSTOM.value:
            raise ValidationFailure("Flash books are booked through the flash catalog")

    booking = Booking(
        client_id=client.id,
        booking_type=BookType.CUSTOM.value,
        status=S.PENDING.value,
        description=data.description,
        size=data.size.value,
        placement=data.placement,
        is_first_tattoo=data.is_first_tattoo,
        preferred_dates=list(data.preferred_dates),
        medical_notes=data.medical_notes,
        book_id=data.book_id,
    )
    session.add(booking)
    session.commit()
    session.refresh(booking)
    logger.info("Custom booking %s created by client %s", booking.id, client.id)
    return booking


@translate_storage_errors
def edit_booking(session: Session, booking_id: int, actor: Actor, changes: BookingUpdate) -> Booking:
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if actor.role != ActorRole.client or booking.client_id != actor.id:
        raise Forbidden("Only the client who made the request can edit it")
    if BookingStatus(booking.status) not in EDITABLE:
        raise InvalidStatus("Booking can only be edited when pending or info requested", booking.status)

    updates = changes.model_dump(exclude_unset=True, mode="json")
    for field in EDITABLE_FIELDS:
        if updates.get(field) is not None:
            setattr(booking, field, updates[field])
    booking.updated_at = utcnow()
    session.add(booking)
    session.commit()
    session.refresh(booking)
    return booking
