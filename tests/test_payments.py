# tests/test_payments.py

from datetime import timedelta

import pytest
import pytz
from sqlmodel import select

from inkbook.errors import Forbidden, ValidationFailure
from inkbook.lifecycle import transition
from inkbook.models import Message, PaymentRequest, ProcessedPaymentEvent, utcnow
from inkbook.outbound import DEPOSIT_PAID, PAYMENT_REQUEST, Outbox
from inkbook.payments import (
    apply_payment_event,
    cancel_payment_request,
    create_payment_request,
    prune_processed_events,
)
from inkbook.schemas import BookingStatus, PaymentEventOutcome, PaymentRequestCreate

from conftest import make_booking, next_weekday

MONDAY = next_weekday(0)


def awaiting_deposit(session, client_user, client_actor, book):
    booking = make_booking(session, client_user, status="APPROVED", book_id=book.id, duration=120, deposit_amount_cents=5000)
    payload = {"date": MONDAY.isoformat(), "start_time": "10:00", "end_time": "12:00"}
    return transition(session, booking.id, BookingStatus.AWAITING_DEPOSIT, client_actor, payload)


def deposit_session(booking_id):
    return {"payment_intent": "pi_123", "metadata": {"booking_id": str(booking_id), "type": "deposit"}}


def test_deposit_event_confirms_booking_once(session, client_user, client_actor, book, notifier):
    booking = awaiting_deposit(session, client_user, client_actor, book)
    now = utcnow()
    outbox = Outbox()

    outcome = apply_payment_event(
        session, "evt_1", "checkout.session.completed", now, deposit_session(booking.id), now=now, outbox=outbox
    )

    assert outcome == PaymentEventOutcome.applied
    session.refresh(booking)
    assert booking.status == "CONFIRMED"
    assert booking.payment_intent_id == "pi_123"
    assert booking.deposit_paid_at is not None
    outbox.drain()
    assert notifier.kinds() == [DEPOSIT_PAID]

    again = apply_payment_event(
        session, "evt_1", "checkout.session.completed", now, deposit_session(booking.id), now=now, outbox=outbox
    )
    assert again == PaymentEventOutcome.duplicate
    outbox.drain()
    assert notifier.kinds() == [DEPOSIT_PAID]
    assert len(session.exec(select(ProcessedPaymentEvent)).all()) == 1


def test_stale_event_is_ignored_and_not_recorded(session, client_user, client_actor, book):
    booking = awaiting_deposit(session, client_user, client_actor, book)
    now = utcnow()

    outcome = apply_payment_event(
        session,
        "evt_old",
        "checkout.session.completed",
        now - timedelta(minutes=10),
        deposit_session(booking.id),
        now=now,
    )

    assert outcome == PaymentEventOutcome.stale
    session.refresh(booking)
    assert booking.status == "AWAITING_DEPOSIT"
    assert session.get(ProcessedPaymentEvent, "evt_old") is None


def test_deposit_for_booking_not_awaiting_is_recorded_without_effect(session, client_user):
    booking = make_booking(session, client_user, status="CANCELLED")
    now = utcnow()

    outcome = apply_payment_event(session, "evt_2", "checkout.session.completed", now, deposit_session(booking.id), now=now)

    assert outcome == PaymentEventOutcome.applied
    session.refresh(booking)
    assert booking.status == "CANCELLED"
    assert session.get(ProcessedPaymentEvent, "evt_2") is not None


@pytest.mark.parametrize("event_type", ["checkout.session.expired", "payment_intent.payment_failed", "customer.created"])
def test_other_event_types_are_only_recorded(session, event_type):
    now = utcnow()
    assert apply_payment_event(session, f"evt_{event_type}", event_type, now, {}, now=now) == PaymentEventOutcome.applied
    assert session.get(ProcessedPaymentEvent, f"evt_{event_type}").event_type == event_type


def test_payment_request_flow(session, client_user, artist_actor, notifier):
    booking = make_booking(session, client_user, status="CONFIRMED")
    outbox = Outbox()

    request = create_payment_request(
        session, outbox, artist_actor, PaymentRequestCreate(booking_id=booking.id, amount_cents=12500, note="Touch-up")
    )
    assert request.status == "PENDING"
    message = session.exec(select(Message).where(Message.booking_id == booking.id)).one()
    assert message.payment_request_id == request.id
    assert "$125.00" in message.content
    outbox.drain()
    assert notifier.kinds() == [PAYMENT_REQUEST]

    now = utcnow()
    checkout = {
        "payment_intent": "pi_req",
        "metadata": {"type": "payment_request", "payment_request_id": str(request.id)},
    }
    assert apply_payment_event(session, "evt_req", "checkout.session.completed", now, checkout, now=now) == PaymentEventOutcome.applied

    paid = session.get(PaymentRequest, request.id)
    session.refresh(paid)
    assert paid.status == "PAID"
    assert paid.payment_intent_id == "pi_req"

    with pytest.raises(ValidationFailure):
        cancel_payment_request(session, artist_actor, request.id)


def test_payment_request_rules(session, client_user, client_actor, artist_actor):
    pending = make_booking(session, client_user)
    with pytest.raises(ValidationFailure):
        create_payment_request(session, Outbox(), artist_actor, PaymentRequestCreate(booking_id=pending.id, amount_cents=100))

    confirmed = make_booking(session, client_user, status="COMPLETED")
    with pytest.raises(Forbidden):
        create_payment_request(session, Outbox(), client_actor, PaymentRequestCreate(booking_id=confirmed.id, amount_cents=100))

    request = create_payment_request(session, Outbox(), artist_actor, PaymentRequestCreate(booking_id=confirmed.id, amount_cents=100))
    assert cancel_payment_request(session, artist_actor, request.id).status == "CANCELLED"


def test_prune_drops_rows_past_retention(session):
    now = utcnow()
    session.add(ProcessedPaymentEvent(event_id="evt_ancient", event_type="x", event_created_at=now, processed_at=now - timedelta(days=31)))
    session.add(ProcessedPaymentEvent(event_id="evt_recent", event_type="x", event_created_at=now, processed_at=now - timedelta(days=1)))
    session.commit()

    assert prune_processed_events(session, now) == 1
    assert session.get(ProcessedPaymentEvent, "evt_ancient") is None
    assert session.get(ProcessedPaymentEvent, "evt_recent") is not None


def test_ledger_compares_and_stores_aware_timestamps(session):
    now = utcnow()
    # the same instant expressed in another offset is not stale
    tokyo = now.astimezone(pytz.timezone("Asia/Tokyo"))

    assert apply_payment_event(session, "evt_tz", "customer.created", tokyo, {}, now=now) == PaymentEventOutcome.applied

    row = session.get(ProcessedPaymentEvent, "evt_tz")
    session.refresh(row)
    assert row.event_created_at == now
    assert row.processed_at.utcoffset() == timedelta(0)
