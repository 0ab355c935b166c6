from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import httpx
from fastapi import HTTPException, status
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from recordroulette.core.config import Settings
from recordroulette.core.crypto import decrypt_text, encrypt_text, token_aad
from recordroulette.core.http import RetryPolicy
from recordroulette.models.identity import User
from recordroulette.services.spotify.api import SpotifyProfile
from recordroulette.services.spotify.oauth import SpotifyTokenResponse, refresh_access_token
from recordroulette.services.spotify.transport import SpotifyApiError

logger = logging.getLogger("recordroulette.api")

SPOTIFY_PROVIDER = "spotify"
# Refresh a little early so a token doesn't expire mid-request upstream.
ACCESS_TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Upsert is not supported for dialect {dialect!r}")


def upsert_spotify_user(
    *,
    session: Session,
    profile: SpotifyProfile,
    token: SpotifyTokenResponse,
    now: datetime | None = None,
) -> UUID:
    now = now or datetime.now(UTC)
    aad = token_aad(provider=SPOTIFY_PROVIDER, provider_id=profile.id)

    values = {
        "id": uuid4(),
        "provider": SPOTIFY_PROVIDER,
        "provider_id": profile.id,
        "display_name": profile.display_name,
        "email": profile.email,
        "avatar_url": profile.avatar_url,
        "encrypted_access_token": encrypt_text(plaintext=token.access_token, aad=aad),
        "encrypted_refresh_token": (
            encrypt_text(plaintext=token.refresh_token, aad=aad) if token.refresh_token else None
        ),
        "token_expires": now + timedelta(seconds=max(0, token.expires_in)),
        "updated_at": now,
    }

    insert = _dialect_insert(session)
    stmt = insert(User).values(**values)
    updates = {
        "display_name": stmt.excluded.display_name,
        "email": stmt.excluded.email,
        "avatar_url": stmt.excluded.avatar_url,
        "encrypted_access_token": stmt.excluded.encrypted_access_token,
        "token_expires": stmt.excluded.token_expires,
        "updated_at": stmt.excluded.updated_at,
    }
    if token.refresh_token:
        updates["encrypted_refresh_token"] = stmt.excluded.encrypted_refresh_token

    stmt = stmt.on_conflict_do_update(
        index_elements=[User.provider, User.provider_id],
        set_=updates,
    ).returning(User.id)

    return session.execute(stmt).scalar_one()


def mark_onboarding_completed(*, session: Session, user: User) -> None:
    user.onboarding_completed = True
    user.updated_at = datetime.now(UTC)
    session.add(user)
    session.flush()


def get_valid_access_token(
    *,
    session: Session,
    http_client: httpx.Client,
    settings: Settings,
    policy: RetryPolicy,
    user: User,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(UTC)
    aad = token_aad(provider=user.provider, provider_id=user.provider_id)

    expires = _as_utc(user.token_expires)
    fresh = expires is not None and expires > now + ACCESS_TOKEN_REFRESH_MARGIN
    if user.encrypted_access_token and fresh:
        return decrypt_text(blob=user.encrypted_access_token, aad=aad)

    if not user.encrypted_refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Spotify authorization expired; log in again",
        )

    refresh_token = decrypt_text(blob=user.encrypted_refresh_token, aad=aad)
    try:
        token = refresh_access_token(
            http_client,
            refresh_token=refresh_token,
            client_id=settings.SPOTIFY_CLIENT_ID,
            client_secret=settings.SPOTIFY_CLIENT_SECRET,
            policy=policy,
        )
    except SpotifyApiError as e:
        logger.warning("Spotify token refresh failed for user=%s: %s", user.id, e)
        if e.retryable:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Spotify token refresh failed",
            ) from e
        # Revoked or invalid grant: only a fresh login can fix it.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Spotify authorization expired; log in again",
        ) from e
    except ValueError as e:
        logger.warning(
            "Spotify token refresh returned an unusable body for user=%s: %s", user.id, e
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Spotify token refresh failed",
        ) from e

    user.encrypted_access_token = encrypt_text(plaintext=token.access_token, aad=aad)
    if token.refresh_token:
        user.encrypted_refresh_token = encrypt_text(plaintext=token.refresh_token, aad=aad)
    user.token_expires = now + timedelta(seconds=max(0, token.expires_in))
    user.updated_at = now
    session.add(user)
    session.flush()
    return token.access_token
