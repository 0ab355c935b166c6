from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.orm import Session

from recordroulette.core.config import get_settings
from recordroulette.core.deps import require_csrf_header, require_user
from recordroulette.core.http import RetryPolicy, get_http_client, get_retry_policy
from recordroulette.db.session import get_session
from recordroulette.models.identity import User
from recordroulette.schemas.me import PlaybackResponse
from recordroulette.services.spotify.api import album_web_url, start_album_playback
from recordroulette.services.spotify.transport import SpotifyApiError
from recordroulette.services.users import get_valid_access_token

logger = logging.getLogger("recordroulette.api")

router = APIRouter(
    prefix="/api/spotify",
    tags=["spotify"],
    dependencies=[Depends(require_csrf_header)],
)

_PLAYBACK_MESSAGES = {
    404: "No active Spotify device found. Open Spotify on a device first.",
    403: "Spotify Premium is required for playback control.",
}


@router.post("/play/{album_id}", response_model=PlaybackResponse)
def play_album(
    album_id: str = Path(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9]+$"),
    user: User = Depends(require_user),
    session: Session = Depends(get_session),
    http_client: httpx.Client = Depends(get_http_client),
    policy: RetryPolicy = Depends(get_retry_policy),
) -> PlaybackResponse:
    access_token = get_valid_access_token(
        session=session,
        http_client=http_client,
        settings=get_settings(),
        policy=policy,
        user=user,
    )
    # Persist a refreshed token even if playback itself fails below.
    session.commit()

    try:
        start_album_playback(
            http_client, access_token=access_token, album_id=album_id, policy=policy
        )
    except SpotifyApiError as e:
        message = _PLAYBACK_MESSAGES.get(e.status_code or 0)
        if message is None:
            logger.warning("Spotify playback failed for user=%s: %s", user.id, e)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Spotify playback request failed",
            ) from e
        return PlaybackResponse(
            success=False,
            playback_method="url",
            requires_device=e.status_code == 404,
            spotify_url=album_web_url(album_id),
            message=message,
        )

    return PlaybackResponse(success=True, playback_method="api")
