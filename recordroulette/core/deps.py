from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from recordroulette.core.config import get_settings
from recordroulette.core.security import tokens_match
from recordroulette.db.session import get_session
from recordroulette.models.identity import User
from recordroulette.services.auth.sessions import read_session_user_id

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def require_csrf_header(request: Request) -> None:
    if request.method in SAFE_METHODS:
        return

    settings = get_settings()
    cookie_token = request.cookies.get(settings.CSRF_COOKIE_NAME)
    header_token = request.headers.get(settings.CSRF_HEADER_NAME)

    if not tokens_match(cookie_token, header_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="CSRF token missing or invalid",
        )


def require_session_user_id(request: Request) -> UUID:
    settings = get_settings()
    user_id = read_session_user_id(settings, request.cookies.get(settings.SESSION_COOKIE_NAME))
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_id


def require_user(
    # Declared before the DB session so an unauthenticated request never opens one.
    user_id: UUID = Depends(require_session_user_id),
    session: Session = Depends(get_session),
) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return user
