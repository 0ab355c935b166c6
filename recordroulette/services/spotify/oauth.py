from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from recordroulette.core.http import RetryPolicy
from recordroulette.services.spotify.transport import send

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

SPOTIFY_SCOPES = [
    "user-read-email",
    "user-library-read",
    "user-read-recently-played",
    "user-top-read",
    "user-read-playback-state",
    "user-modify-playback-state",
    "streaming",
]


@dataclass(frozen=True)
class SpotifyTokenResponse:
    access_token: str
    expires_in: int
    refresh_token: str | None


def build_authorization_url(
    *,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": " ".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"


def _parse_token_payload(payload: object) -> SpotifyTokenResponse:
    if not isinstance(payload, dict):
        raise ValueError("Spotify token response is not an object")
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ValueError("Spotify token response has no access_token")
    return SpotifyTokenResponse(
        access_token=access_token,
        expires_in=int(payload.get("expires_in") or 0),
        refresh_token=payload.get("refresh_token") or None,
    )


def exchange_code_for_tokens(
    client: httpx.Client,
    *,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    policy: RetryPolicy,
) -> SpotifyTokenResponse:
    res = send(
        client,
        "POST",
        SPOTIFY_TOKEN_URL,
        policy=policy,
        label="Spotify token exchange",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        },
        auth=(client_id, client_secret),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    return _parse_token_payload(res.json())


def refresh_access_token(
    client: httpx.Client,
    *,
    refresh_token: str,
    client_id: str,
    client_secret: str,
    policy: RetryPolicy,
) -> SpotifyTokenResponse:
    res = send(
        client,
        "POST",
        SPOTIFY_TOKEN_URL,
        policy=policy,
        label="Spotify token refresh",
        data={
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        auth=(client_id, client_secret),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    # Spotify only sometimes rotates the refresh token; absence means keep the old one.
    return _parse_token_payload(res.json())
