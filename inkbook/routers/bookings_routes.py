# inkbook/routers/bookings_routes.py

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from inkbook.auth import get_current_user
from inkbook.db import get_session
from inkbook.deps import actor_from_user, get_outbox, require_role
from inkbook.errors import AlreadyClaimed, SlotTaken
from inkbook.lifecycle import create_custom_booking, edit_booking, transition
from inkbook.models import Booking
from inkbook.outbound import Outbox
from inkbook.reservations import ALREADY_CLAIMED, claim_and_book
from inkbook.schemas import (
    BookingCreate,
    BookingPublic,
    BookingStatus,
    BookingUpdate,
    FlashBookingCreate,
    SchedulePayload,
    TransitionRequest,
)

router = APIRouter(
    tags=["bookings"],
)


@router.post("/bookings", response_model=BookingPublic, status_code=201)
def create_booking(
    data: BookingCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "client")
    return create_custom_booking(session, actor_from_user(current_user), data)


@router.get("/bookings", response_model=List[BookingPublic])
def list_bookings(
    status: Optional[BookingStatus] = None,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    stmt = select(Booking).order_by(Booking.created_at.desc())
    # clients only ever see their own bookings
    if current_user["role"] != "artist":
        stmt = stmt.where(Booking.client_id == current_user["id"])
    if status is not None:
        stmt = stmt.where(Booking.status == status.value)
    return session.exec(stmt).all()


@router.get("/bookings/{booking_id}", response_model=BookingPublic)
def get_booking(
    booking_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    if current_user["role"] != "artist" and booking.client_id != current_user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return booking


@router.patch("/bookings/{booking_id}", response_model=BookingPublic)
def update_booking(
    booking_id: int,
    changes: BookingUpdate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    return edit_booking(session, booking_id, actor_from_user(current_user), changes)


@router.post("/bookings/{booking_id}/transition", response_model=BookingPublic)
def transition_booking(
    booking_id: int,
    request: TransitionRequest,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    return transition(
        session,
        booking_id,
        request.target,
        actor_from_user(current_user),
        request.payload,
        outbox=outbox,
    )


@router.post("/bookings/{booking_id}/schedule", response_model=BookingPublic)
def schedule_booking(
    booking_id: int,
    data: SchedulePayload,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    return transition(
        session,
        booking_id,
        BookingStatus.AWAITING_DEPOSIT,
        actor_from_user(current_user),
        data.model_dump(mode="json"),
        outbox=outbox,
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingPublic)
def cancel_booking(
    booking_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    return transition(
        session,
        booking_id,
        BookingStatus.CANCELLED,
        actor_from_user(current_user),
        outbox=outbox,
    )


@router.post("/flash-bookings", response_model=BookingPublic, status_code=201)
def create_flash_booking(
    data: FlashBookingCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    require_role(current_user, "client")

    result = claim_and_book(
        session,
        outbox,
        data.flash_piece_id,
        data.size.value,
        data.date,
        data.start_time,
        data.end_time,
        current_user["id"],
    )
    if not result.success:
        if result.error == ALREADY_CLAIMED:
            raise AlreadyClaimed()
        raise SlotTaken(result.alternative.model_dump() if result.alternative else None)
    return result.booking
