# inkbook/schemas.py

from datetime import datetime, date
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .calendar import Weekday, normalize_hours, time_to_minutes

HHMM = Annotated[str, Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$", examples=["09:00"])]


class UserRole(str, Enum):
    artist = "artist"
    client = "client"


class ActorRole(str, Enum):
    artist = "artist"
    client = "client"
    system = "system"  # payment ledger


class BookType(str, Enum):
    CUSTOM = "CUSTOM"
    FLASH = "FLASH"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    INFO_REQUESTED = "INFO_REQUESTED"
    APPROVED = "APPROVED"
    AWAITING_DEPOSIT = "AWAITING_DEPOSIT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


class BlockKind(str, Enum):
    APPOINTMENT = "APPOINTMENT"
    BLOCKED_OFF = "BLOCKED_OFF"


class ExceptionKind(str, Enum):
    UNAVAILABLE = "UNAVAILABLE"
    CUSTOM_HOURS = "CUSTOM_HOURS"


class TattooSize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    EXTRA_LARGE = "EXTRA_LARGE"


class PaymentRequestStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentEventOutcome(str, Enum):
    applied = "applied"
    duplicate = "duplicate"
    stale = "stale"


class Slot(BaseModel):
    start: str
    end: str


class TimeRange(BaseModel):
    start_time: HHMM
    end_time: HHMM

    @model_validator(mode="after")
    def check_order(self):
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("end_time must be after start_time")
        return self


# --- users -----------------------------------------------------------------

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: UserRole


class UserPublic(BaseModel):
    id: int
    email: str
    name: str
    role: UserRole


class UserCreate(BaseModel):
    # self-service signup always creates a client; unknown fields such as role are ignored
    email: str
    name: str = ""
    phone: Optional[str] = None
    password: str = Field(min_length=8, max_length=72)


# --- books and catalog -----------------------------------------------------

class DayHours(BaseModel):
    start: HHMM
    end: HHMM


class BookBase(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    deposit_amount_cents: Optional[int] = Field(default=None, gt=0)
    hours: Optional[Dict[Weekday, Optional[DayHours]]] = None

    @field_validator("hours")
    @classmethod
    def check_hours(cls, value):
        if value is None:
            return value
        raw = {day.value: (entry.model_dump() if entry else None) for day, entry in value.items()}
        normalize_hours(raw)
        return value

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

    def hours_dict(self) -> Optional[Dict[str, Dict[str, str]]]:
        if self.hours is None:
            return None
        return normalize_hours(
            {day.value: (entry.model_dump() if entry else None) for day, entry in self.hours.items()}
        )


class BookCreate(BookBase):
    name: str = Field(min_length=1)
    type: BookType
    is_active: bool = True


class BookUpdate(BookBase):
    pass


class BookPublic(BaseModel):
    id: int
    name: str
    description: Optional[str]
    type: BookType
    is_active: bool
    start_date: Optional[date]
    end_date: Optional[date]
    deposit_amount_cents: Optional[int]
    hours: Dict[str, Dict[str, str]]


class FlashSizeIn(BaseModel):
    size: TattooSize
    duration_minutes: int = Field(ge=15, le=480)
    price_cents: int = Field(ge=0)


class FlashPieceCreate(BaseModel):
    name: str = Field(min_length=1)
    image_url: Optional[str] = None
    is_repeatable: bool = False
    sizes: List[FlashSizeIn] = Field(min_length=1)

    @field_validator("sizes")
    @classmethod
    def unique_sizes(cls, value):
        if len({s.size for s in value}) != len(value):
            raise ValueError("Each size can only be listed once")
        return value


class FlashPiecePublic(BaseModel):
    id: int
    book_id: int
    name: str
    image_url: Optional[str]
    is_repeatable: bool
    is_claimed: bool
    sizes: List[FlashSizeIn]


# --- availability ----------------------------------------------------------

class SlotsResponse(BaseModel):
    book_id: int
    date: date
    duration: int
    slots: List[Slot]


class MonthAvailabilityResponse(BaseModel):
    book_id: int
    month: str
    availability: Dict[str, bool]


class BlockCreate(TimeRange):
    date: date
    book_id: Optional[int] = None  # None blocks every book
    notes: Optional[str] = None


class TimeBlockPublic(BaseModel):
    id: int
    book_id: Optional[int]
    date: date
    start_time: str
    end_time: str
    kind: BlockKind
    booking_id: Optional[int]
    notes: Optional[str]


class ExceptionCreate(BaseModel):
    date: date
    kind: ExceptionKind
    custom_start: Optional[HHMM] = None
    custom_end: Optional[HHMM] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_custom_hours(self):
        if self.kind == ExceptionKind.CUSTOM_HOURS:
            if not self.custom_start or not self.custom_end:
                raise ValueError("Custom hours require custom_start and custom_end")
            if time_to_minutes(self.custom_start) >= time_to_minutes(self.custom_end):
                raise ValueError("custom_end must be after custom_start")
        return self


class ExceptionPublic(BaseModel):
    id: int
    date: date
    kind: ExceptionKind
    custom_start: Optional[str]
    custom_end: Optional[str]
    reason: Optional[str]


# --- bookings --------------------------------------------------------------

class BookingCreate(BaseModel):
    description: str = Field(min_length=10)
    size: TattooSize
    placement: str = Field(min_length=1)
    is_first_tattoo: bool = False
    preferred_dates: List[str] = Field(default_factory=list, max_length=3)
    medical_notes: Optional[str] = None
    book_id: Optional[int] = None


class BookingUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=10)
    size: Optional[TattooSize] = None
    placement: Optional[str] = Field(default=None, min_length=1)
    is_first_tattoo: Optional[bool] = None
    preferred_dates: Optional[List[str]] = Field(default=None, min_length=1, max_length=3)
    medical_notes: Optional[str] = None


class ApprovePayload(BaseModel):
    duration: Optional[int] = Field(default=None, gt=0)
    deposit_amount_cents: int = Field(gt=0)
    total_amount_cents: Optional[int] = Field(default=None, gt=0)
    artist_notes: Optional[str] = None
    book_id: Optional[int] = None


class InfoRequestPayload(BaseModel):
    artist_notes: str = Field(min_length=1)


class DeclinePayload(BaseModel):
    reason: str = Field(min_length=1)


class SchedulePayload(TimeRange):
    date: date


class TransitionRequest(BaseModel):
    target: BookingStatus
    payload: Dict[str, Any] = Field(default_factory=dict)


class BookingPublic(BaseModel):
    id: int
    client_id: int
    booking_type: BookType
    status: BookingStatus
    description: str
    size: Optional[str]
    placement: Optional[str]
    is_first_tattoo: bool
    preferred_dates: List[str]
    medical_notes: Optional[str]
    book_id: Optional[int]
    flash_piece_id: Optional[int]
    appointment_date: Optional[date]
    scheduled_start: Optional[str]
    scheduled_end: Optional[str]
    duration: Optional[int]
    deposit_amount_cents: Optional[int]
    total_amount_cents: Optional[int]
    deposit_paid_at: Optional[datetime]
    artist_notes: Optional[str]
    decline_reason: Optional[str]
    chat_enabled: bool


class FlashBookingCreate(TimeRange):
    flash_piece_id: int
    size: TattooSize
    date: date


# --- payments --------------------------------------------------------------

class PaymentRequestCreate(BaseModel):
    booking_id: int
    amount_cents: int = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=500)


class PaymentRequestPublic(BaseModel):
    id: int
    booking_id: int
    amount_cents: int
    note: Optional[str]
    status: PaymentRequestStatus
    paid_at: Optional[datetime]


class PaymentEventResponse(BaseModel):
    received: bool = True
    outcome: PaymentEventOutcome
