"""Spotify login: authorize redirect and callback completion.

The callback never raises to the browser; every failure becomes a coarse
flag that the router appends to the app root redirect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

import httpx
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from recordroulette.core.config import Settings
from recordroulette.core.http import RetryPolicy
from recordroulette.core.security import new_random_token, tokens_match
from recordroulette.services.spotify.api import get_profile
from recordroulette.services.spotify.oauth import (
    SPOTIFY_SCOPES,
    build_authorization_url,
    exchange_code_for_tokens,
)
from recordroulette.services.spotify.transport import SpotifyApiError
from recordroulette.services.users import upsert_spotify_user

logger = logging.getLogger("recordroulette.api")

ERROR_ACCESS_DENIED = "access_denied"
ERROR_INVALID_REQUEST = "invalid_request"
ERROR_INVALID_STATE = "invalid_state"
ERROR_TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
ERROR_PROFILE_FETCH_FAILED = "profile_fetch_failed"
ERROR_AUTH_FAILED = "auth_failed"


class LoginFailed(Exception):
    def __init__(self, flag: str) -> None:
        super().__init__(flag)
        self.flag = flag


@dataclass(frozen=True)
class LoginStart:
    state: str
    authorization_url: str


def _require_configured(settings: Settings) -> None:
    if not settings.spotify_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Spotify OAuth is not configured",
        )


def start_spotify_login(*, settings: Settings) -> LoginStart:
    _require_configured(settings)

    state = new_random_token(nbytes=24)
    url = build_authorization_url(
        client_id=settings.SPOTIFY_CLIENT_ID,
        redirect_uri=settings.SPOTIFY_REDIRECT_URI,
        scopes=SPOTIFY_SCOPES,
        state=state,
    )
    return LoginStart(state=state, authorization_url=url)


def complete_spotify_login(
    *,
    session: Session,
    http_client: httpx.Client,
    settings: Settings,
    policy: RetryPolicy,
    code: str | None,
    state: str | None,
    error: str | None,
    stored_state: str | None,
) -> UUID:
    if error:
        logger.info("Spotify authorization declined: %s", error[:64])
        raise LoginFailed(ERROR_ACCESS_DENIED)
    if not code or not state:
        raise LoginFailed(ERROR_INVALID_REQUEST)
    if not tokens_match(stored_state, state):
        logger.warning("Spotify callback state mismatch (cookie present=%s)", bool(stored_state))
        raise LoginFailed(ERROR_INVALID_STATE)
    if not settings.spotify_configured:
        logger.error("Spotify callback received but SPOTIFY_CLIENT_ID/SECRET are not set")
        raise LoginFailed(ERROR_TOKEN_EXCHANGE_FAILED)

    try:
        token = exchange_code_for_tokens(
            http_client,
            code=code,
            client_id=settings.SPOTIFY_CLIENT_ID,
            client_secret=settings.SPOTIFY_CLIENT_SECRET,
            redirect_uri=settings.SPOTIFY_REDIRECT_URI,
            policy=policy,
        )
    except (SpotifyApiError, KeyError, ValueError) as e:
        logger.warning("Spotify token exchange failed: %s", e)
        raise LoginFailed(ERROR_TOKEN_EXCHANGE_FAILED) from e

    try:
        profile = get_profile(http_client, access_token=token.access_token, policy=policy)
    except (SpotifyApiError, KeyError, ValueError) as e:
        logger.warning("Spotify profile fetch failed: %s", e)
        raise LoginFailed(ERROR_PROFILE_FETCH_FAILED) from e

    user_id = upsert_spotify_user(session=session, profile=profile, token=token)
    logger.info("Spotify login completed for user=%s", user_id)
    return user_id
