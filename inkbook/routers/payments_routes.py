# inkbook/routers/payments_routes.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from inkbook.auth import get_current_user
from inkbook.db import get_session
from inkbook.deps import actor_from_user, get_outbox, require_role
from inkbook.models import Booking, PaymentRequest
from inkbook.outbound import Outbox
from inkbook.payments import cancel_payment_request, create_payment_request
from inkbook.schemas import PaymentRequestCreate, PaymentRequestPublic

router = APIRouter(
    prefix="/payment-requests",
    tags=["payments"],
)


@router.post("", response_model=PaymentRequestPublic, status_code=201)
def request_payment(
    data: PaymentRequestCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    require_role(current_user, "artist")
    return create_payment_request(session, outbox, actor_from_user(current_user), data)


@router.get("", response_model=List[PaymentRequestPublic])
def list_payment_requests(
    booking_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    if current_user["role"] != "artist" and booking.client_id != current_user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return session.exec(
        select(PaymentRequest)
        .where(PaymentRequest.booking_id == booking_id)
        .order_by(PaymentRequest.created_at)
    ).all()


@router.post("/{request_id}/cancel", response_model=PaymentRequestPublic)
def cancel_request(
    request_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")
    return cancel_payment_request(session, actor_from_user(current_user), request_id)
