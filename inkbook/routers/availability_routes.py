# inkbook/routers/availability_routes.py

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from inkbook.auth import get_current_user
from inkbook.availability import get_available_slots, get_availability_for_date_range
from inkbook.calendar import month_bounds
from inkbook.config import get_settings
from inkbook.db import get_session
from inkbook.deps import get_outbox, require_role
from inkbook.models import AvailabilityException, TimeBlock
from inkbook.outbound import Outbox
from inkbook.reservations import create_manual_block, delete_time_block
from inkbook.schemas import (
    BlockCreate,
    ExceptionCreate,
    ExceptionPublic,
    MonthAvailabilityResponse,
    SlotsResponse,
    TimeBlockPublic,
)

router = APIRouter(
    prefix="/availability",
    tags=["availability"],
)


@router.get("/slots", response_model=SlotsResponse)
def available_slots(
    book_id: int,
    date: date,
    duration: Optional[int] = None,
    session: Session = Depends(get_session),
):
    duration = duration if duration is not None else get_settings().default_duration_minutes
    slots = get_available_slots(session, book_id, date, duration)
    return {"book_id": book_id, "date": date, "duration": duration, "slots": slots}


@router.get("/month", response_model=MonthAvailabilityResponse)
def month_availability(
    book_id: int,
    month: str,
    duration: Optional[int] = None,
    session: Session = Depends(get_session),
):
    try:
        first, last = month_bounds(month)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    duration = duration if duration is not None else get_settings().default_duration_minutes
    days = get_availability_for_date_range(session, book_id, first, last, duration)
    return {
        "book_id": book_id,
        "month": month,
        "availability": {day.isoformat(): open_ for day, open_ in days.items()},
    }


@router.get("/blocks", response_model=List[TimeBlockPublic])
def list_blocks(
    start: date,
    end: date,
    book_id: Optional[int] = None,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")
    stmt = (
        select(TimeBlock)
        .where(TimeBlock.date >= start)
        .where(TimeBlock.date <= end)
        .order_by(TimeBlock.date, TimeBlock.start_time)
    )
    if book_id is not None:
        stmt = stmt.where(TimeBlock.book_id == book_id)
    return session.exec(stmt).all()


@router.post("/blocks", response_model=TimeBlockPublic, status_code=201)
def create_block(
    data: BlockCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    require_role(current_user, "artist")
    return create_manual_block(
        session, outbox, data.book_id, data.date, data.start_time, data.end_time, notes=data.notes
    )


@router.delete("/blocks/{block_id}", status_code=204)
def delete_block(
    block_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    outbox: Outbox = Depends(get_outbox),
):
    require_role(current_user, "artist")
    delete_time_block(session, outbox, block_id)


@router.post("/exceptions", response_model=ExceptionPublic, status_code=201)
def create_exception(
    data: ExceptionCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")

    # 1) One exception per date
    existing = session.exec(
        select(AvailabilityException).where(AvailabilityException.date == data.date)
    ).first()
    if existing is not None:
        raise HTTPException(status_code=409, detail="An exception already exists for this date")

    # 2) Persist; custom times only mean something for CUSTOM_HOURS
    custom = data.kind.value == "CUSTOM_HOURS"
    exception = AvailabilityException(
        date=data.date,
        kind=data.kind.value,
        custom_start=data.custom_start if custom else None,
        custom_end=data.custom_end if custom else None,
        reason=data.reason,
    )
    session.add(exception)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="An exception already exists for this date")
    session.refresh(exception)
    return exception


@router.get("/exceptions", response_model=List[ExceptionPublic])
def list_exceptions(
    start: date,
    end: date,
    session: Session = Depends(get_session),
):
    return session.exec(
        select(AvailabilityException)
        .where(AvailabilityException.date >= start)
        .where(AvailabilityException.date <= end)
        .order_by(AvailabilityException.date)
    ).all()


@router.delete("/exceptions/{exception_id}", status_code=204)
def delete_exception(
    exception_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")
    exception = session.get(AvailabilityException, exception_id)
    if exception is None:
        raise HTTPException(status_code=404, detail="Exception not found")
    session.delete(exception)
    session.commit()
