# inkbook/auth.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlmodel import Session, select

from .config import Settings, get_settings
from .db import get_session
from .models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, settings.secret_key.get_secret_value(), algorithm=settings.algorithm)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key.get_secret_value(), algorithms=[settings.algorithm])
    except JWTError:
        raise _unauthorized("Invalid token")

    email = payload.get("sub")
    if email is None:
        raise _unauthorized("Invalid token")

    user = find_user(session, email)
    if user is None:
        raise _unauthorized("User not found")

    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
    }


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_user(session: Session, email: str) -> Optional[User]:
    return session.exec(
        select(User).where(User.email == normalize_email(email))
    ).first()


def authenticate(session: Session, email: str, password: str) -> Optional[User]:
    user = find_user(session, email)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def ensure_artist_account(session: Session, settings: Optional[Settings] = None) -> Optional[User]:
    """
    Create the studio's artist account from settings, or promote the
    configured email if it signed up as a client first. Does nothing when
    no artist credentials are configured.
    """
    settings = settings or get_settings()
    if not settings.artist_email or settings.artist_password is None:
        logger.warning("No artist account configured; set INKBOOK_ARTIST_EMAIL and INKBOOK_ARTIST_PASSWORD")
        return None

    user = find_user(session, settings.artist_email)
    if user is None:
        user = User(
            email=normalize_email(settings.artist_email),
            name=settings.artist_name,
            password_hash=hash_password(settings.artist_password.get_secret_value()),
            role="artist",
        )
        logger.info("Created artist account %s", user.email)
    elif user.role != "artist":
        user.role = "artist"
        logger.warning("Promoted %s to the artist account", user.email)
    else:
        return user

    session.add(user)
    session.commit()
    session.refresh(user)
    return user
