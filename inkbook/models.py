# inkbook/models.py

from typing import Optional, List, Dict
from datetime import datetime, timezone, date as Date

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.types import JSON
from sqlmodel import SQLModel, Field, Column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = ""
    phone: Optional[str] = None
    password_hash: str
    role: str  # artist or client


class Book(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    type: str  # CUSTOM or FLASH
    is_active: bool = True
    start_date: Optional[Date] = None
    end_date: Optional[Date] = None
    deposit_amount_cents: Optional[int] = None
    # {"monday": {"start": "09:00", "end": "17:00"}, ...}; missing day = closed
    hours: Dict[str, Dict[str, str]] = Field(default_factory=dict, sa_column=Column(JSON))


class AvailabilityException(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    date: Date = Field(index=True, unique=True)
    kind: str  # UNAVAILABLE or CUSTOM_HOURS
    custom_start: Optional[str] = None
    custom_end: Optional[str] = None
    reason: Optional[str] = None


class TimeBlock(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("book_id", "date", "start_time", name="uq_block_book_start"),
        Index("ix_timeblock_book_date", "book_id", "date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # None = studio-wide block, occupies every book
    book_id: Optional[int] = Field(default=None, foreign_key="book.id")
    date: Date
    start_time: str  # HH:MM
    end_time: str
    kind: str  # APPOINTMENT or BLOCKED_OFF
    booking_id: Optional[int] = Field(default=None, foreign_key="booking.id", unique=True)
    notes: Optional[str] = None
    calendar_event_id: Optional[str] = None


class Booking(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    client_id: int = Field(foreign_key="user.id", index=True)
    booking_type: str = "CUSTOM"
    status: str = Field(default="PENDING", index=True)

    description: str = ""
    size: Optional[str] = None
    placement: Optional[str] = None
    is_first_tattoo: bool = False
    preferred_dates: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    medical_notes: Optional[str] = None

    book_id: Optional[int] = Field(default=None, foreign_key="book.id")
    flash_piece_id: Optional[int] = Field(default=None, foreign_key="flashpiece.id")

    appointment_date: Optional[Date] = None
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    duration: Optional[int] = None

    deposit_amount_cents: Optional[int] = None
    total_amount_cents: Optional[int] = None
    deposit_paid_at: Optional[datetime] = None
    payment_intent_id: Optional[str] = None

    artist_notes: Optional[str] = None
    decline_reason: Optional[str] = None
    chat_enabled: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FlashPiece(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True)
    name: str
    image_url: Optional[str] = None
    is_repeatable: bool = False
    is_claimed: bool = False
    claimed_by_booking_id: Optional[int] = None


class FlashPieceSize(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("piece_id", "size", name="uq_piece_size"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    piece_id: int = Field(foreign_key="flashpiece.id", index=True)
    size: str
    duration_minutes: int
    price_cents: int


class ProcessedPaymentEvent(SQLModel, table=True):
    event_id: str = Field(primary_key=True)
    event_type: str
    event_created_at: datetime = Field(index=True)
    processed_at: datetime = Field(default_factory=utcnow)


class PaymentRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    amount_cents: int
    note: Optional[str] = None
    status: str = "PENDING"  # PENDING, PAID or CANCELLED
    paid_at: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    sender_id: int = Field(foreign_key="user.id")
    content: str
    payment_request_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class ScheduledNotification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    kind: str
    channel: str  # EMAIL or SMS
    scheduled_for: datetime
    status: str = "PENDING"  # PENDING, SENT or FAILED
