from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recordroulette.core.config import Settings, get_settings
from recordroulette.core.crypto import EncryptionKeyError
from recordroulette.core.http import RetryPolicy, get_http_client, get_retry_policy
from recordroulette.core.metrics import observe_login_callback
from recordroulette.core.security import (
    clear_csrf_cookie,
    clear_oauth_state_cookie,
    clear_session_cookie,
    new_random_token,
    set_csrf_cookie,
    set_oauth_state_cookie,
    set_session_cookie,
)
from recordroulette.db.session import get_session
from recordroulette.schemas.auth import CsrfTokenResponse, LogoutResponse
from recordroulette.services.auth.sessions import issue_session_token
from recordroulette.services.auth.spotify_login import (
    ERROR_AUTH_FAILED,
    LoginFailed,
    complete_spotify_login,
    start_spotify_login,
)

logger = logging.getLogger("recordroulette.api")

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _app_root_redirect(settings: Settings, *, error: str | None = None) -> RedirectResponse:
    url = settings.APP_ROOT_URL
    if error:
        url = f"{url}?{urlencode({'error': error})}"
    return RedirectResponse(
        url=url,
        status_code=status.HTTP_302_FOUND,
        headers={"Cache-Control": "no-store"},
    )


@router.get("/csrf", response_model=CsrfTokenResponse)
def issue_csrf(response: Response) -> CsrfTokenResponse:
    token = new_random_token()
    set_csrf_cookie(response, token)
    response.headers["Cache-Control"] = "no-store"
    return CsrfTokenResponse(csrf_token=token)


@router.get("/spotify/login")
def spotify_login() -> RedirectResponse:
    settings = get_settings()
    start = start_spotify_login(settings=settings)

    response = RedirectResponse(
        url=start.authorization_url,
        status_code=status.HTTP_302_FOUND,
        headers={"Cache-Control": "no-store"},
    )
    set_oauth_state_cookie(response, start.state)
    return response


@router.get("/spotify/callback")
def spotify_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    session: Session = Depends(get_session),
    http_client: httpx.Client = Depends(get_http_client),
    policy: RetryPolicy = Depends(get_retry_policy),
) -> RedirectResponse:
    settings = get_settings()

    try:
        user_id = complete_spotify_login(
            session=session,
            http_client=http_client,
            settings=settings,
            policy=policy,
            code=code,
            state=state,
            error=error,
            stored_state=request.cookies.get(settings.OAUTH_STATE_COOKIE_NAME),
        )
        session.commit()
    except LoginFailed as e:
        observe_login_callback(outcome=e.flag)
        response = _app_root_redirect(settings, error=e.flag)
    except (SQLAlchemyError, EncryptionKeyError):
        session.rollback()
        logger.exception("Persisting Spotify user failed")
        observe_login_callback(outcome=ERROR_AUTH_FAILED)
        response = _app_root_redirect(settings, error=ERROR_AUTH_FAILED)
    except Exception:  # noqa: BLE001
        # Anything unexpected still ends on the app root with the state cleared.
        session.rollback()
        logger.exception("Spotify callback failed unexpectedly")
        observe_login_callback(outcome=ERROR_AUTH_FAILED)
        response = _app_root_redirect(settings, error=ERROR_AUTH_FAILED)
    else:
        response = _app_root_redirect(settings)
        observe_login_callback(outcome="success")
        set_session_cookie(response, issue_session_token(settings, user_id=user_id))

    # The state is single-use whatever the outcome.
    clear_oauth_state_cookie(response)
    return response


@router.post("/logout", response_model=LogoutResponse)
def logout(response: Response) -> LogoutResponse:
    clear_session_cookie(response)
    clear_oauth_state_cookie(response)
    clear_csrf_cookie(response)
    response.headers["Cache-Control"] = "no-store"
    return LogoutResponse(ok=True)
