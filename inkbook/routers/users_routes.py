# inkbook/routers/users_routes.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from inkbook.auth import find_user, get_current_user, hash_password, normalize_email
from inkbook.db import get_session
from inkbook.models import User
from inkbook.schemas import UserCreate, UserPublic, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["users"],
)


@router.get("/me", response_model=UserPublic)
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@router.post("/users", status_code=201, response_model=UserPublic)
def register_client(
    user: UserCreate,
    session: Session = Depends(get_session),
):
    # 1) Emails are unique regardless of case
    email = normalize_email(user.email)
    if not email:
        raise HTTPException(status_code=422, detail="Email is required")
    if find_user(session, email) is not None:
        raise HTTPException(status_code=409, detail="Email already registered")

    # 2) Signup only ever creates clients; the artist account comes from settings
    client = User(
        email=email,
        name=user.name.strip(),
        phone=user.phone,
        password_hash=hash_password(user.password),
        role=UserRole.client.value,
    )
    session.add(client)
    session.commit()
    session.refresh(client)

    logger.info("Registered client %s", client.email)
    return client
