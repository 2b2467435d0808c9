# tests/conftest.py

import os

# must be set before inkbook reads its settings
os.environ.setdefault("INKBOOK_DATABASE_URL", "sqlite:///./inkbook-test.db")
os.environ["INKBOOK_STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["INKBOOK_PAYMENT_EVENT_PRUNE_PROBABILITY"] = "0"

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from inkbook import db, outbound
from inkbook.auth import create_access_token, hash_password
from inkbook.lifecycle import Actor
from inkbook.models import Book, Booking, FlashPiece, FlashPieceSize, User
from inkbook.schemas import ActorRole

WEEKDAY_HOURS = {"start": "09:00", "end": "17:00"}
DEFAULT_HOURS = {
    day: dict(WEEKDAY_HOURS) for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
}

# bcrypt is slow; hash once for every test user
PASSWORD = "secret-pass"
PASSWORD_HASH = hash_password(PASSWORD)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def notify(self, recipient: str, kind: str, params: Dict[str, Any]) -> None:
        self.sent.append((recipient, kind, params))

    def kinds(self) -> List[str]:
        return [kind for _, kind, _ in self.sent]


class RecordingCalendarMirror:
    def __init__(self) -> None:
        self.upserts: List[Tuple[int, date, str, str, str]] = []
        self.removed: List[str] = []

    def upsert(self, block_id: int, day: date, start: str, end: str, description: str) -> Optional[str]:
        self.upserts.append((block_id, day, start, end, description))
        return None

    def remove(self, event_id: str) -> None:
        self.removed.append(event_id)


def next_weekday(weekday: int, weeks_ahead: int = 2) -> date:
    """A date on ``weekday`` (0 = Monday) at least ``weeks_ahead`` weeks out."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    return start + timedelta(days=(weekday - start.weekday()) % 7)


@pytest.fixture
def engine(tmp_path):
    engine = db.configure_engine(f"sqlite:///{tmp_path / 'inkbook.db'}")
    db.init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    previous = outbound.get_notifier()
    outbound.set_notifier(recorder)
    yield recorder
    outbound.set_notifier(previous)


@pytest.fixture
def mirror():
    recorder = RecordingCalendarMirror()
    previous = outbound.get_calendar_mirror()
    outbound.set_calendar_mirror(recorder)
    yield recorder
    outbound.set_calendar_mirror(previous)


@pytest.fixture
def client(engine, notifier, mirror):
    from inkbook.main import app

    with TestClient(app) as c:
        yield c


def make_user(session: Session, email: str, role: str) -> User:
    user = User(email=email, name=email.split("@")[0], password_hash=PASSWORD_HASH, role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def artist(session):
    return make_user(session, "artist@studio.test", "artist")


@pytest.fixture
def client_user(session):
    return make_user(session, "client@studio.test", "client")


@pytest.fixture
def other_client(session):
    return make_user(session, "other@studio.test", "client")


@pytest.fixture
def artist_actor(artist):
    return Actor(role=ActorRole.artist, id=artist.id)


@pytest.fixture
def client_actor(client_user):
    return Actor(role=ActorRole.client, id=client_user.id)


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


def make_book(session: Session, type: str = "CUSTOM", **kwargs) -> Book:
    kwargs.setdefault("hours", DEFAULT_HOURS)
    kwargs.setdefault("deposit_amount_cents", 5000)
    book = Book(name=f"{type.title()} book", type=type, **kwargs)
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


@pytest.fixture
def book(session):
    return make_book(session)


@pytest.fixture
def flash_book(session):
    return make_book(session, type="FLASH")


def make_piece(session: Session, book: Book, is_repeatable: bool = False) -> FlashPiece:
    piece = FlashPiece(book_id=book.id, name="Swallow", is_repeatable=is_repeatable)
    session.add(piece)
    session.flush()
    session.add(FlashPieceSize(piece_id=piece.id, size="SMALL", duration_minutes=60, price_cents=15000))
    session.add(FlashPieceSize(piece_id=piece.id, size="MEDIUM", duration_minutes=120, price_cents=25000))
    session.commit()
    session.refresh(piece)
    return piece


def make_booking(session: Session, client: User, status: str = "PENDING", **kwargs) -> Booking:
    booking = Booking(
        client_id=client.id,
        status=status,
        description="A small swallow on the wrist",
        size="SMALL",
        placement="wrist",
        **kwargs,
    )
    session.add(booking)
    session.commit()
    session.refresh(booking)
    return booking
