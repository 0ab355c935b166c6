from __future__ import annotations

import base64
import hmac
import os

from fastapi import Response

from recordroulette.core.config import Settings, get_settings


def new_random_token(*, nbytes: int = 32) -> str:
    raw = os.urandom(nbytes)
    # URL-safe base64 without padding to keep cookie/header/query values compact.
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def tokens_match(expected: str | None, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def _set_cookie(
    response: Response,
    *,
    settings: Settings,
    key: str,
    value: str,
    max_age: int,
    httponly: bool = True,
) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=httponly,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        domain=settings.COOKIE_DOMAIN,
        path="/",
        max_age=max_age,
    )


def _clear_cookie(response: Response, *, settings: Settings, key: str, httponly: bool = True) -> None:
    response.delete_cookie(
        key=key,
        domain=settings.COOKIE_DOMAIN,
        path="/",
        secure=settings.COOKIE_SECURE,
        httponly=httponly,
        samesite=settings.COOKIE_SAMESITE,
    )


def set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    _set_cookie(
        response,
        settings=settings,
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_SECONDS,
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    _clear_cookie(response, settings=settings, key=settings.SESSION_COOKIE_NAME)


def set_oauth_state_cookie(response: Response, state: str) -> None:
    settings = get_settings()
    _set_cookie(
        response,
        settings=settings,
        key=settings.OAUTH_STATE_COOKIE_NAME,
        value=state,
        max_age=settings.OAUTH_STATE_TTL_SECONDS,
    )


def clear_oauth_state_cookie(response: Response) -> None:
    settings = get_settings()
    _clear_cookie(response, settings=settings, key=settings.OAUTH_STATE_COOKIE_NAME)


def set_csrf_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    # Readable by the frontend so it can echo the value in the CSRF header.
    _set_cookie(
        response,
        settings=settings,
        key=settings.CSRF_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=False,
    )


def clear_csrf_cookie(response: Response) -> None:
    settings = get_settings()
    _clear_cookie(response, settings=settings, key=settings.CSRF_COOKIE_NAME, httponly=False)
