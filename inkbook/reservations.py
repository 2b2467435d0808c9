# inkbook/reservations.py
"""
Reservation and flash-claim transactions.

Every write that occupies time goes through ``occupy`` inside
``db.run_serializable``: the overlap check and the insert commit as one unit,
so two callers racing for overlapping intervals cannot both win. Losing a
race is reported as SLOT_TAKEN together with the earliest alternative slot of
the same length; a storage-level serialization failure is reported the same
way after one retry.
"""

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from .availability import blocks_for_book, book_in_season, get_earliest_slot, within_hours
from .calendar import time_to_minutes
from .config import studio_today
from .db import SerializationConflict, run_serializable, translate_storage_errors
from .errors import AlreadyClaimed, AlreadyScheduled, NotFound, SlotTaken, StorageUnavailable, ValidationFailure
from .models import Book, Booking, FlashPiece, FlashPieceSize, TimeBlock, User
from .outbound import DEPOSIT_REQUEST, Outbox, queue_calendar_upsert, queue_calendar_remove, queue_notification
from .schemas import BlockKind, BookingStatus, BookType, Slot

logger = logging.getLogger(__name__)

SLOT_TAKEN = "SLOT_TAKEN"
ALREADY_CLAIMED = "ALREADY_CLAIMED"


class ReservationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    time_block: Optional[TimeBlock] = None
    error: Optional[str] = None
    alternative: Optional[Slot] = None


class ClaimResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    booking: Optional[Booking] = None
    error: Optional[str] = None
    alternative: Optional[Slot] = None


def validate_interval(start: str, end: str) -> int:
    """Check an HH:MM interval and return its length in minutes."""
    try:
        length = time_to_minutes(end) - time_to_minutes(start)
    except ValueError as exc:
        raise ValidationFailure(str(exc)) from exc
    if length <= 0:
        raise ValidationFailure("end time must be after start time")
    return length


def find_overlap(
    session: Session,
    book_id: Optional[int],
    day: date,
    start: str,
    end: str,
) -> Optional[TimeBlock]:
    # HH:MM strings are zero-padded, so string order is time order
    if book_id is None:
        stmt = select(TimeBlock).where(TimeBlock.date == day)
    else:
        stmt = blocks_for_book(book_id, day)
    stmt = stmt.where(TimeBlock.start_time < end).where(TimeBlock.end_time > start)
    return session.exec(stmt).first()


def occupy(
    session: Session,
    book_id: Optional[int],
    day: date,
    start: str,
    end: str,
    booking_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> TimeBlock:
    """
    Overlap check and insert. Only call this inside ``run_serializable``;
    raises SlotTaken (without an alternative) when the interval is occupied
    and AlreadyScheduled when ``booking_id`` already owns a block.
    """
    if booking_id is not None and session.exec(
        select(TimeBlock.id).where(TimeBlock.booking_id == booking_id)
    ).first() is not None:
        raise AlreadyScheduled()
    if find_overlap(session, book_id, day, start, end) is not None:
        raise SlotTaken()

    block = TimeBlock(
        book_id=book_id,
        date=day,
        start_time=start,
        end_time=end,
        kind=(BlockKind.APPOINTMENT if booking_id else BlockKind.BLOCKED_OFF).value,
        booking_id=booking_id,
        notes=notes,
    )
    session.add(block)
    session.flush()
    return block


def suggest_alternative(
    session: Session,
    book_id: Optional[int],
    day: date,
    duration: Optional[int],
) -> Optional[Slot]:
    if book_id is None or not duration:
        return None
    try:
        return get_earliest_slot(session, book_id, day, duration)
    except StorageUnavailable:
        logger.warning("Could not compute an alternative slot for book %s on %s", book_id, day)
        return None


@translate_storage_errors
def reserve_slot(
    session: Session,
    book_id: Optional[int],
    day: date,
    start: str,
    end: str,
    booking_id: Optional[int] = None,
    duration: Optional[int] = None,
    notes: Optional[str] = None,
) -> ReservationResult:
    """
    Durably occupy [start, end) on ``day``.

    A block linked to a booking is an APPOINTMENT, anything else is a manual
    BLOCKED_OFF block; ``book_id=None`` blocks the whole studio.
    """
    validate_interval(start, end)

    try:
        block = run_serializable(
            session,
            lambda s: occupy(s, book_id, day, start, end, booking_id=booking_id, notes=notes),
        )
    except (SlotTaken, SerializationConflict):
        logger.info("Slot %s %s-%s taken for book %s", day, start, end, book_id)
        return ReservationResult(
            success=False,
            error=SLOT_TAKEN,
            alternative=suggest_alternative(session, book_id, day, duration),
        )

    session.refresh(block)
    logger.info("Reserved block %s: %s %s-%s for book %s", block.id, day, start, end, book_id)
    return ReservationResult(success=True, time_block=block)


@translate_storage_errors
def create_manual_block(
    session: Session,
    outbox: Outbox,
    book_id: Optional[int],
    day: date,
    start: str,
    end: str,
    notes: Optional[str] = None,
) -> TimeBlock:
    if book_id is not None and session.get(Book, book_id) is None:
        raise NotFound("Book not found")

    result = reserve_slot(session, book_id, day, start, end, notes=notes)
    if not result.success:
        raise SlotTaken(result.alternative.model_dump() if result.alternative else None)

    queue_calendar_upsert(outbox, result.time_block, notes or "Blocked off")
    return result.time_block


@translate_storage_errors
def delete_time_block(session: Session, outbox: Outbox, block_id: int) -> None:
    block = session.get(TimeBlock, block_id)
    if block is None:
        raise NotFound("Time block not found")
    if block.booking_id is not None:
        raise ValidationFailure("Appointment blocks are released by cancelling the booking")

    event_id = block.calendar_event_id
    session.delete(block)
    session.commit()
    queue_calendar_remove(outbox, event_id)


# --- flash claims ----------------------------------------------------------

def release_claim(session: Session, booking: Booking) -> bool:
    """
    Clear the flash claim held by ``booking``. A claim that has since moved to
    another booking is left alone.
    """
    if booking.flash_piece_id is None:
        return False
    piece = session.get(FlashPiece, booking.flash_piece_id)
    if piece is None or piece.is_repeatable or piece.claimed_by_booking_id != booking.id:
        return False
    piece.is_claimed = False
    piece.claimed_by_booking_id = None
    session.add(piece)
    return True


def _claim_and_book(
    session: Session,
    piece_id: int,
    book: Book,
    piece_size: FlashPieceSize,
    day: date,
    start: str,
    end: str,
    client_id: int,
) -> Booking:
    if find_overlap(session, book.id, day, start, end) is not None:
        raise SlotTaken()

    # re-read inside the transaction; the pre-check may be stale
    piece = session.get(FlashPiece, piece_id)
    if piece is None:
        raise NotFound("Flash piece not found")
    if not piece.is_repeatable and piece.is_claimed:
        raise AlreadyClaimed()

    booking = Booking(
        client_id=client_id,
        booking_type=BookType.FLASH.value,
        status=BookingStatus.AWAITING_DEPOSIT.value,
        book_id=book.id,
        flash_piece_id=piece.id,
        description=piece.name,
        size=piece_size.size,
        appointment_date=day,
        scheduled_start=start,
        scheduled_end=end,
        duration=piece_size.duration_minutes,
        deposit_amount_cents=book.deposit_amount_cents,
        total_amount_cents=piece_size.price_cents,
    )
    session.add(booking)
    session.flush()

    occupy(session, book.id, day, start, end, booking_id=booking.id)

    if not piece.is_repeatable:
        piece.is_claimed = True
        piece.claimed_by_booking_id = booking.id
        session.add(piece)
    return booking


@translate_storage_errors
def claim_and_book(
    session: Session,
    outbox: Outbox,
    piece_id: int,
    size: str,
    day: date,
    start: str,
    end: str,
    client_id: int,
) -> ClaimResult:
    """
    Book a flash piece: slot check, claim check and booking creation commit
    together or not at all.
    """
    length = validate_interval(start, end)

    piece = session.get(FlashPiece, piece_id)
    if piece is None:
        raise NotFound("Flash piece not found")
    book = session.get(Book, piece.book_id)
    if book is None or book.type != BookType.FLASH.value:
        raise ValidationFailure("Not a flash book")
    if not book_in_season(book, studio_today()):
        raise ValidationFailure("Book is not open for bookings")
    if not book.deposit_amount_cents:
        raise ValidationFailure("Book deposit not configured")

    piece_size = session.exec(
        select(FlashPieceSize)
        .where(FlashPieceSize.piece_id == piece.id)
        .where(FlashPieceSize.size == size)
    ).first()
    if piece_size is None:
        raise ValidationFailure("Selected size is not available for this piece")
    if piece_size.duration_minutes != length:
        raise ValidationFailure(f"This size takes {piece_size.duration_minutes} minutes")
    if not within_hours(session, book, day, start, end):
        raise ValidationFailure("The studio is not open at that time")

    # fast path only; re-checked inside the transaction
    if not piece.is_repeatable and piece.is_claimed:
        return ClaimResult(success=False, error=ALREADY_CLAIMED)

    book_id, duration = book.id, piece_size.duration_minutes
    try:
        booking = run_serializable(
            session,
            lambda s: _claim_and_book(s, piece_id, book, piece_size, day, start, end, client_id),
        )
    except AlreadyClaimed:
        logger.info("Flash piece %s already claimed", piece_id)
        return ClaimResult(success=False, error=ALREADY_CLAIMED)
    except (SlotTaken, SerializationConflict):
        logger.info("Flash booking slot %s %s-%s taken for book %s", day, start, end, book_id)
        return ClaimResult(
            success=False,
            error=SLOT_TAKEN,
            alternative=suggest_alternative(session, book_id, day, duration),
        )

    session.refresh(booking)
    logger.info("Flash piece %s booked as booking %s", piece_id, booking.id)

    block = session.exec(select(TimeBlock).where(TimeBlock.booking_id == booking.id)).one()
    client = session.get(User, client_id)
    queue_calendar_upsert(outbox, block, f"Flash: {booking.description}")
    queue_notification(
        outbox,
        client.email if client else None,
        DEPOSIT_REQUEST,
        {
            "booking_id": booking.id,
            "date": day.isoformat(),
            "start": start,
            "deposit_amount_cents": booking.deposit_amount_cents,
        },
    )
    return ClaimResult(success=True, booking=booking)
