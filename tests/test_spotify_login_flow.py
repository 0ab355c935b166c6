from __future__ import annotations

from collections.abc import Callable, Generator
from urllib.parse import parse_qs, urlsplit

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from recordroulette.core.config import get_settings
from recordroulette.core.crypto import decrypt_text, token_aad
from recordroulette.core.http import get_http_client
from recordroulette.db.session import get_session
from recordroulette.main import create_app
from recordroulette.models.identity import User

TOKEN_URL = "https://accounts.spotify.com/api/token"
PROFILE_URL = "https://api.spotify.com/v1/me"


def _spotify_handler(
    calls: list[str],
    *,
    provider_id: str,
    display_name: str = "Record Spinner",
    token_statuses: list[int] | None = None,
    profile_status: int = 200,
    profile_body: object | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    pending_token_statuses = list(token_statuses or [])

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        calls.append(url)

        if url == TOKEN_URL:
            assert request.headers["Authorization"].startswith("Basic ")
            form = {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}
            if form.get("grant_type") != "authorization_code":
                return httpx.Response(400, json={"error": "unsupported_grant_type"})
            status_code = pending_token_statuses.pop(0) if pending_token_statuses else 200
            if status_code != 200:
                return httpx.Response(status_code, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{provider_id}",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                    "refresh_token": f"refresh-{provider_id}",
                    "scope": "user-read-email",
                },
            )

        if url == PROFILE_URL:
            assert request.headers["Authorization"] == f"Bearer access-{provider_id}"
            if profile_status != 200:
                return httpx.Response(profile_status, json={"error": {"status": profile_status}})
            if profile_body is not None:
                return httpx.Response(200, json=profile_body)
            return httpx.Response(
                200,
                json={
                    "id": provider_id,
                    "display_name": display_name,
                    "email": f"{provider_id}@example.com",
                    "images": [{"url": f"https://i.scdn.co/image/{provider_id}"}],
                },
            )

        return httpx.Response(404, json={"error": "not_found"})

    return handler


def _install_http_client(app: FastAPI, handler) -> httpx.Client:
    http_client = httpx.Client(transport=httpx.MockTransport(handler), timeout=10.0)

    def override_http_client() -> Generator[httpx.Client, None, None]:
        yield http_client

    app.dependency_overrides[get_http_client] = override_http_client
    return http_client


def _start_login(client: TestClient) -> str:
    res = client.get("/api/auth/spotify/login", follow_redirects=False)
    assert res.status_code == 302
    return parse_qs(urlsplit(res.headers["location"]).query)["state"][0]


def _callback(client: TestClient, query: str) -> httpx.Response:
    return client.get(f"/api/auth/spotify/callback?{query}", follow_redirects=False)


def _session_cookies(res: httpx.Response) -> list[str]:
    return [h for h in res.headers.get_list("set-cookie") if h.startswith("session=")]


def test_login_redirects_to_spotify_with_state_cookie() -> None:
    app = create_app()
    client = TestClient(app)

    res = client.get("/api/auth/spotify/login", follow_redirects=False)
    assert res.status_code == 302

    parts = urlsplit(res.headers["location"])
    assert parts.netloc == "accounts.spotify.com"
    assert parts.path == "/authorize"
    qs = parse_qs(parts.query)
    assert qs["response_type"] == ["code"]
    assert qs["client_id"] == ["test-spotify-client-id"]
    assert qs["redirect_uri"] == ["http://testserver/api/auth/spotify/callback"]
    assert "user-read-email" in qs["scope"][0].split(" ")
    assert "user-modify-playback-state" in qs["scope"][0].split(" ")

    state_cookie = next(
        h for h in res.headers.get_list("set-cookie") if h.startswith("oauth_state=")
    )
    assert f"oauth_state={qs['state'][0]}" in state_cookie
    assert "HttpOnly" in state_cookie
    assert "Max-Age=600" in state_cookie
    assert "samesite=lax" in state_cookie.lower()


def test_login_fails_when_spotify_is_not_configured(monkeypatch) -> None:
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "")
    get_settings.cache_clear()
    try:
        app = create_app()
        client = TestClient(app)
        res = client.get("/api/auth/spotify/login", follow_redirects=False)
        assert res.status_code == 503
    finally:
        get_settings.cache_clear()


def test_callback_creates_single_user_and_issues_session(db_session: Session) -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="flow-user-1", display_name="First Name")
    )

    state = _start_login(client)
    res = _callback(client, f"code=auth-code&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/"
    assert len(_session_cookies(res)) == 1
    assert calls == [TOKEN_URL, PROFILE_URL]

    users = (
        db_session.execute(select(User).where(User.provider_id == "flow-user-1")).scalars().all()
    )
    assert len(users) == 1
    user = users[0]
    assert user.provider == "spotify"
    assert user.display_name == "First Name"
    assert user.email == "flow-user-1@example.com"
    assert user.avatar_url == "https://i.scdn.co/image/flow-user-1"
    assert user.token_expires is not None

    # Tokens are stored encrypted and bound to the identity.
    aad = token_aad(provider="spotify", provider_id="flow-user-1")
    assert user.encrypted_access_token != b"access-flow-user-1"
    assert decrypt_text(blob=user.encrypted_access_token, aad=aad) == "access-flow-user-1"
    assert decrypt_text(blob=user.encrypted_refresh_token, aad=aad) == "refresh-flow-user-1"

    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["id"] == str(user.id)

    app.dependency_overrides.clear()
    http_client.close()


def test_repeated_callback_updates_existing_user(db_session: Session) -> None:
    app = create_app()
    client = TestClient(app)

    calls: list[str] = []
    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="flow-user-2", display_name="Before")
    )
    state = _start_login(client)
    assert _callback(client, f"code=code-1&state={state}").status_code == 302
    first_id = client.get("/api/me").json()["id"]
    http_client.close()

    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="flow-user-2", display_name="After")
    )
    state = _start_login(client)
    res = _callback(client, f"code=code-2&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/"

    me = client.get("/api/me").json()
    assert me["id"] == first_id
    assert me["displayName"] == "After"

    users = (
        db_session.execute(select(User).where(User.provider_id == "flow-user-2")).scalars().all()
    )
    assert len(users) == 1
    assert users[0].display_name == "After"

    app.dependency_overrides.clear()
    http_client.close()


def test_declined_consent_never_calls_token_endpoint() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="declined"))

    state = _start_login(client)
    res = _callback(client, f"error=access_denied&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=access_denied"
    assert calls == []
    assert _session_cookies(res) == []

    app.dependency_overrides.clear()
    http_client.close()


def test_callback_without_code_never_calls_token_endpoint() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="no-code"))

    state = _start_login(client)
    res = _callback(client, f"state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=invalid_request"
    assert calls == []

    res = _callback(client, "code=abc")
    assert res.headers["location"] == "/?error=invalid_request"
    assert calls == []

    app.dependency_overrides.clear()
    http_client.close()


def test_callback_rejects_state_that_does_not_match_cookie() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="forged"))

    _start_login(client)
    res = _callback(client, "code=abc&state=forged-state")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=invalid_state"
    assert calls == []
    assert _session_cookies(res) == []

    # Without any state cookie the callback is rejected too.
    fresh = TestClient(app)
    res = _callback(fresh, "code=abc&state=whatever")
    assert res.headers["location"] == "/?error=invalid_state"
    assert calls == []

    app.dependency_overrides.clear()
    http_client.close()


def test_callback_state_is_single_use() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="single-use"))

    state = _start_login(client)
    first = _callback(client, f"code=abc&state={state}")
    assert first.headers["location"] == "/"
    cleared = [h for h in first.headers.get_list("set-cookie") if h.startswith("oauth_state=")]
    assert cleared and "Max-Age=0" in cleared[0]

    second = _callback(client, f"code=abc&state={state}")
    assert second.headers["location"] == "/?error=invalid_state"

    app.dependency_overrides.clear()
    http_client.close()


def test_token_exchange_client_error_is_terminal() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="bad-code", token_statuses=[400])
    )

    state = _start_login(client)
    res = _callback(client, f"code=expired&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=token_exchange_failed"
    assert calls == [TOKEN_URL]
    assert _session_cookies(res) == []

    app.dependency_overrides.clear()
    http_client.close()


def test_token_exchange_retries_transient_failures() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="flaky-token", token_statuses=[503, 502])
    )

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.headers["location"] == "/"
    assert calls == [TOKEN_URL, TOKEN_URL, TOKEN_URL, PROFILE_URL]
    assert len(_session_cookies(res)) == 1

    app.dependency_overrides.clear()
    http_client.close()


def test_token_exchange_gives_up_after_bounded_attempts() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app,
        _spotify_handler(calls, provider_id="down-token", token_statuses=[500, 500, 500, 500]),
    )

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.headers["location"] == "/?error=token_exchange_failed"
    assert calls == [TOKEN_URL] * get_settings().SPOTIFY_MAX_ATTEMPTS

    app.dependency_overrides.clear()
    http_client.close()


def test_profile_fetch_failure_redirects_with_flag(db_session: Session) -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app, _spotify_handler(calls, provider_id="no-profile", profile_status=401)
    )

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=profile_fetch_failed"
    assert calls == [TOKEN_URL, PROFILE_URL]
    assert _session_cookies(res) == []

    user = (
        db_session.execute(select(User).where(User.provider_id == "no-profile")).scalars().first()
    )
    assert user is None

    app.dependency_overrides.clear()
    http_client.close()


def _state_cleared(res: httpx.Response) -> bool:
    cleared = [h for h in res.headers.get_list("set-cookie") if h.startswith("oauth_state=")]
    return bool(cleared) and "Max-Age=0" in cleared[0]


def test_profile_body_that_is_not_an_object_redirects_with_flag() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(
        app,
        _spotify_handler(calls, provider_id="list-profile", profile_body=["not", "an", "object"]),
    )

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=profile_fetch_failed"
    assert _session_cookies(res) == []
    assert _state_cleared(res)

    app.dependency_overrides.clear()
    http_client.close()


def test_profile_without_usable_id_never_creates_a_user(db_session: Session) -> None:
    app = create_app()
    client = TestClient(app)

    for body in ({"id": None, "display_name": None}, {"id": ""}, {"id": 42}, {"email": "x@y.z"}):
        calls: list[str] = []
        http_client = _install_http_client(
            app, _spotify_handler(calls, provider_id="null-id", profile_body=body)
        )
        state = _start_login(client)
        res = _callback(client, f"code=abc&state={state}")
        assert res.headers["location"] == "/?error=profile_fetch_failed", body
        assert _session_cookies(res) == []
        http_client.close()

    users = db_session.execute(select(User).where(User.provider_id == "None")).scalars().all()
    assert users == []

    app.dependency_overrides.clear()


class _BrokenSession:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.rolled_back = False
        self.committed = False

    def get_bind(self) -> None:
        raise self.exc

    def execute(self, *args: object, **kwargs: object) -> None:
        raise self.exc

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True


def _install_broken_session(app: FastAPI, broken: _BrokenSession) -> None:
    def override_session() -> Generator[_BrokenSession, None, None]:
        yield broken

    app.dependency_overrides[get_session] = override_session


def test_persistence_failure_redirects_with_auth_failed() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="db-down"))
    broken = _BrokenSession(OperationalError("INSERT INTO users", {}, Exception("disk I/O error")))
    _install_broken_session(app, broken)

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=auth_failed"
    assert _session_cookies(res) == []
    assert _state_cleared(res)
    assert calls == [TOKEN_URL, PROFILE_URL]
    assert broken.rolled_back
    assert not broken.committed

    app.dependency_overrides.clear()
    http_client.close()


def test_unexpected_callback_error_still_redirects_and_clears_state() -> None:
    app = create_app()
    client = TestClient(app)
    calls: list[str] = []
    http_client = _install_http_client(app, _spotify_handler(calls, provider_id="boom"))
    broken = _BrokenSession(RuntimeError("unexpected"))
    _install_broken_session(app, broken)

    state = _start_login(client)
    res = _callback(client, f"code=abc&state={state}")
    assert res.status_code == 302
    assert res.headers["location"] == "/?error=auth_failed"
    assert _session_cookies(res) == []
    assert _state_cleared(res)
    assert broken.rolled_back

    app.dependency_overrides.clear()
    http_client.close()
