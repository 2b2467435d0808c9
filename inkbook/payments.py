# inkbook/payments.py
"""
Payment event ledger and ad-hoc payment requests.

The payment processor delivers events at least once and in any order. Every
event id is applied at most once: the effect and the ``ProcessedPaymentEvent``
row commit in the same transaction, so a redelivery either sees the row
(duplicate) or loses the insert race and is reported the same way.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .config import get_settings
from .db import SerializationConflict, run_serializable, translate_storage_errors
from .errors import Forbidden, NotFound, StorageUnavailable, ValidationFailure
from .lifecycle import SYSTEM_ACTOR, Actor, apply_transition
from .models import Booking, Message, PaymentRequest, ProcessedPaymentEvent, User, utcnow
from .outbound import PAYMENT_REQUEST, Outbox, queue_notification
from .schemas import ActorRole, BookingStatus, PaymentEventOutcome, PaymentRequestCreate, PaymentRequestStatus

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

PAYABLE = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value})


def _metadata_id(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = (payload.get("metadata") or {}).get(key)
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _mark_request_paid(session: Session, event_id: str, payload: Dict[str, Any]) -> None:
    request_id = _metadata_id(payload, "payment_request_id")
    request = session.get(PaymentRequest, request_id) if request_id else None
    if request is None:
        logger.warning("Payment event %s names unknown payment request %s", event_id, request_id)
        return
    if request.status != PaymentRequestStatus.PENDING.value:
        logger.info("Payment request %s is %s, event %s recorded without effect", request.id, request.status, event_id)
        return
    request.status = PaymentRequestStatus.PAID.value
    request.paid_at = utcnow()
    request.payment_intent_id = payload.get("payment_intent")
    session.add(request)


def _confirm_deposit(session: Session, event_id: str, payload: Dict[str, Any], outbox: Outbox) -> None:
    booking_id = _metadata_id(payload, "booking_id")
    booking = session.get(Booking, booking_id) if booking_id else None
    if booking is None:
        logger.warning("Payment event %s names unknown booking %s", event_id, booking_id)
        return
    if booking.status != BookingStatus.AWAITING_DEPOSIT.value:
        logger.info(
            "Deposit event %s for booking %s in status %s recorded without effect",
            event_id,
            booking.id,
            booking.status,
        )
        return
    apply_transition(
        session,
        booking,
        BookingStatus.CONFIRMED,
        SYSTEM_ACTOR,
        {"payment_intent_id": payload.get("payment_intent")},
        outbox,
    )


def _apply_effect(session: Session, event_id: str, event_type: str, payload: Dict[str, Any], outbox: Outbox) -> None:
    if event_type != CHECKOUT_COMPLETED:
        # expired sessions, failed intents and anything unknown are only recorded
        return
    if (payload.get("metadata") or {}).get("type") == "payment_request":
        _mark_request_paid(session, event_id, payload)
    else:
        _confirm_deposit(session, event_id, payload, outbox)


@translate_storage_errors
def apply_payment_event(
    session: Session,
    event_id: str,
    event_type: str,
    event_created_at: datetime,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
    outbox: Optional[Outbox] = None,
) -> PaymentEventOutcome:
    """
    Apply a payment event at most once.

    ``event_created_at`` and ``now`` are timezone-aware. Events older than the
    configured max age are refused as stale without being recorded, so the
    processor's own retry never replays an old event.
    """
    settings = get_settings()
    now = now or utcnow()

    if session.get(ProcessedPaymentEvent, event_id) is not None:
        logger.info("Payment event %s already processed, skipping", event_id)
        return PaymentEventOutcome.duplicate

    age = now - event_created_at
    if age > timedelta(seconds=settings.payment_event_max_age_seconds):
        logger.info("Payment event %s is stale (%ds old), ignoring", event_id, age.total_seconds())
        return PaymentEventOutcome.stale

    pending = Outbox()

    def work(s: Session) -> PaymentEventOutcome:
        pending.clear()
        if s.get(ProcessedPaymentEvent, event_id) is not None:
            return PaymentEventOutcome.duplicate
        _apply_effect(s, event_id, event_type, payload or {}, pending)
        s.add(
            ProcessedPaymentEvent(
                event_id=event_id,
                event_type=event_type,
                event_created_at=event_created_at,
                processed_at=now,
            )
        )
        s.flush()
        return PaymentEventOutcome.applied

    try:
        outcome = run_serializable(session, work)
    except SerializationConflict:
        session.rollback()
        if session.get(ProcessedPaymentEvent, event_id) is not None:
            outcome = PaymentEventOutcome.duplicate
        else:
            raise StorageUnavailable("Payment event could not be recorded, please retry") from None

    if outcome == PaymentEventOutcome.duplicate:
        logger.info("Payment event %s was processed concurrently, skipping", event_id)
        return outcome

    logger.info("Payment event %s (%s) applied", event_id, event_type)
    if outbox is not None:
        outbox.extend(pending)

    if random.random() < settings.payment_event_prune_probability:
        prune_processed_events(session, now)
    return outcome


def prune_processed_events(session: Session, now: Optional[datetime] = None) -> int:
    """Drop ledger rows past the retention window. Failures are only logged."""
    now = now or utcnow()
    cutoff = now - timedelta(days=get_settings().payment_event_retention_days)
    try:
        rows = session.exec(
            select(ProcessedPaymentEvent).where(ProcessedPaymentEvent.processed_at < cutoff)
        ).all()
        for row in rows:
            session.delete(row)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("Pruning processed payment events failed: %s", exc)
        return 0
    if rows:
        logger.info("Pruned %d processed payment event(s)", len(rows))
    return len(rows)


# --- ad-hoc payment requests -------------------------------------------------

@translate_storage_errors
def create_payment_request(
    session: Session,
    outbox: Outbox,
    actor: Actor,
    data: PaymentRequestCreate,
) -> PaymentRequest:
    if actor.role != ActorRole.artist:
        raise Forbidden("Only the artist can request payments")

    booking = session.get(Booking, data.booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.status not in PAYABLE:
        raise ValidationFailure("Payments can only be requested for confirmed or completed bookings")

    request = PaymentRequest(booking_id=booking.id, amount_cents=data.amount_cents, note=data.note)
    session.add(request)
    session.flush()

    amount = f"${data.amount_cents / 100:.2f}"
    content = f"Payment request: {amount}" + (f"\n{data.note}" if data.note else "")
    session.add(Message(booking_id=booking.id, sender_id=actor.id, content=content, payment_request_id=request.id))

    booking.chat_enabled = True
    booking.updated_at = utcnow()
    session.add(booking)
    session.commit()
    session.refresh(request)

    client = session.get(User, booking.client_id)
    queue_notification(
        outbox,
        client.email if client else None,
        PAYMENT_REQUEST,
        {"booking_id": booking.id, "payment_request_id": request.id, "amount_cents": request.amount_cents},
    )
    logger.info("Payment request %s created for booking %s", request.id, booking.id)
    return request


@translate_storage_errors
def cancel_payment_request(session: Session, actor: Actor, request_id: int) -> PaymentRequest:
    if actor.role != ActorRole.artist:
        raise Forbidden("Only the artist can cancel payment requests")

    request = session.get(PaymentRequest, request_id)
    if request is None:
        raise NotFound("Payment request not found")
    if request.status != PaymentRequestStatus.PENDING.value:
        raise ValidationFailure("Only pending payment requests can be cancelled")

    request.status = PaymentRequestStatus.CANCELLED.value
    session.add(request)
    session.commit()
    session.refresh(request)
    return request
