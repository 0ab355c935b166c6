from __future__ import annotations

from dataclasses import dataclass

import httpx

from recordroulette.core.http import RetryPolicy
from recordroulette.services.spotify.transport import send

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_PROFILE_URL = f"{SPOTIFY_API_BASE}/me"
SPOTIFY_SHUFFLE_URL = f"{SPOTIFY_API_BASE}/me/player/shuffle"
SPOTIFY_PLAY_URL = f"{SPOTIFY_API_BASE}/me/player/play"


@dataclass(frozen=True)
class SpotifyProfile:
    id: str
    display_name: str | None
    email: str | None
    avatar_url: str | None


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def get_profile(
    client: httpx.Client, *, access_token: str, policy: RetryPolicy
) -> SpotifyProfile:
    res = send(
        client,
        "GET",
        SPOTIFY_PROFILE_URL,
        policy=policy,
        label="Spotify profile lookup",
        headers=_auth_headers(access_token),
    )

    payload = res.json()
    if not isinstance(payload, dict):
        raise ValueError("Spotify profile response is not an object")
    spotify_id = payload.get("id")
    if not isinstance(spotify_id, str) or not spotify_id:
        # The id keys the user row; never let a null or empty id collapse accounts together.
        raise ValueError("Spotify profile response has no usable id")

    images = payload.get("images") or []
    avatar_url = images[0].get("url") if images and isinstance(images[0], dict) else None
    return SpotifyProfile(
        id=spotify_id,
        # Spotify leaves display_name null for some accounts; fall back to the user id.
        display_name=payload.get("display_name") or spotify_id,
        email=payload.get("email"),
        avatar_url=avatar_url,
    )


def album_web_url(album_id: str) -> str:
    return f"https://open.spotify.com/album/{album_id}"


def start_album_playback(
    client: httpx.Client, *, access_token: str, album_id: str, policy: RetryPolicy
) -> None:
    headers = _auth_headers(access_token)

    # Albums are meant to be heard in order.
    send(
        client,
        "PUT",
        SPOTIFY_SHUFFLE_URL,
        policy=policy,
        label="Spotify shuffle toggle",
        params={"state": "false"},
        headers=headers,
    )
    send(
        client,
        "PUT",
        SPOTIFY_PLAY_URL,
        policy=policy,
        label="Spotify playback start",
        json={"context_uri": f"spotify:album:{album_id}", "offset": {"position": 0}},
        headers=headers,
    )
