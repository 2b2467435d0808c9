# inkbook/routers/auth_routes.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session

from inkbook.auth import authenticate, create_access_token
from inkbook.config import get_settings
from inkbook.db import get_session
from inkbook.schemas import Token

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    # 1) The OAuth2 form calls the email "username"
    user = authenticate(session, form_data.username, form_data.password)
    if user is None:
        logger.info("Failed login for %s", form_data.username)
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2) Issue a token carrying the email; the role is looked up on every request
    expires_minutes = get_settings().access_token_expire_minutes
    return {
        "access_token": create_access_token({"sub": user.email}, expires_minutes),
        "token_type": "bearer",
        "expires_in": expires_minutes * 60,
        "role": user.role,
    }
