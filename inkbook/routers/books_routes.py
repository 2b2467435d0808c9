# inkbook/routers/books_routes.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from inkbook.auth import get_current_user
from inkbook.db import get_session
from inkbook.deps import require_role
from inkbook.models import Book, FlashPiece, FlashPieceSize
from inkbook.schemas import BookCreate, BookPublic, BookType, BookUpdate, FlashPieceCreate, FlashPiecePublic

router = APIRouter(
    prefix="/books",
    tags=["books"],
)


def _piece_public(session: Session, piece: FlashPiece) -> dict:
    sizes = session.exec(
        select(FlashPieceSize).where(FlashPieceSize.piece_id == piece.id)
    ).all()
    return {
        "id": piece.id,
        "book_id": piece.book_id,
        "name": piece.name,
        "image_url": piece.image_url,
        "is_repeatable": piece.is_repeatable,
        "is_claimed": piece.is_claimed,
        "sizes": [
            {"size": s.size, "duration_minutes": s.duration_minutes, "price_cents": s.price_cents}
            for s in sizes
        ],
    }


def _get_book(session: Session, book_id: int) -> Book:
    book = session.get(Book, book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.post("", response_model=BookPublic, status_code=201)
def create_book(
    data: BookCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")

    book = Book(
        name=data.name,
        description=data.description,
        type=data.type.value,
        is_active=data.is_active,
        start_date=data.start_date,
        end_date=data.end_date,
        deposit_amount_cents=data.deposit_amount_cents,
        hours=data.hours_dict() or {},
    )
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


@router.get("", response_model=List[BookPublic])
def list_books(
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    stmt = select(Book).order_by(Book.id)
    # clients only see books that are taking bookings
    if current_user["role"] != "artist":
        stmt = stmt.where(Book.is_active == True)  # noqa: E712
    return session.exec(stmt).all()


@router.get("/{book_id}", response_model=BookPublic)
def get_book(
    book_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    return _get_book(session, book_id)


@router.patch("/{book_id}", response_model=BookPublic)
def update_book(
    book_id: int,
    changes: BookUpdate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")
    book = _get_book(session, book_id)

    updates = changes.model_dump(exclude_unset=True, exclude={"hours"})
    for field, value in updates.items():
        setattr(book, field, value)
    if "hours" in changes.model_fields_set:
        book.hours = changes.hours_dict() or {}

    if book.start_date and book.end_date and book.end_date < book.start_date:
        raise HTTPException(status_code=422, detail="end_date must be on or after start_date")

    session.add(book)
    session.commit()
    session.refresh(book)
    return book


@router.post("/{book_id}/flash-pieces", response_model=FlashPiecePublic, status_code=201)
def create_flash_piece(
    book_id: int,
    data: FlashPieceCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "artist")
    book = _get_book(session, book_id)
    if book.type != BookType.FLASH.value:
        raise HTTPException(status_code=422, detail="Flash pieces belong in a flash book")

    piece = FlashPiece(
        book_id=book.id,
        name=data.name,
        image_url=data.image_url,
        is_repeatable=data.is_repeatable,
    )
    session.add(piece)
    session.flush()
    for size in data.sizes:
        session.add(
            FlashPieceSize(
                piece_id=piece.id,
                size=size.size.value,
                duration_minutes=size.duration_minutes,
                price_cents=size.price_cents,
            )
        )
    session.commit()
    session.refresh(piece)
    return _piece_public(session, piece)


@router.get("/{book_id}/flash-pieces", response_model=List[FlashPiecePublic])
def list_flash_pieces(
    book_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    _get_book(session, book_id)
    pieces = session.exec(
        select(FlashPiece).where(FlashPiece.book_id == book_id).order_by(FlashPiece.id)
    ).all()
    return [_piece_public(session, p) for p in pieces]
