from __future__ import annotations

import os
import sys

import httpx


def _expect(response: httpx.Response, status_code: int, *, label: str) -> None:
    if response.status_code != status_code:
        raise RuntimeError(
            f"{label} failed: expected HTTP {status_code}, got {response.status_code}"
        )


def main() -> None:
    base_url = os.environ.get("API_BASE_URL", "http://localhost:8000")

    with httpx.Client(base_url=base_url, timeout=20.0) as client:
        _expect(client.get("/healthz"), 200, label="GET /healthz")
        print("ok: GET /healthz")

        _expect(client.get("/readyz"), 200, label="GET /readyz")
        print("ok: GET /readyz")

        csrf_res = client.get("/api/auth/csrf")
        _expect(csrf_res, 200, label="GET /api/auth/csrf")
        csrf_token = csrf_res.json()["csrf_token"]
        print("ok: GET /api/auth/csrf")

        # Without a session cookie the profile endpoint must refuse.
        _expect(client.get("/api/me"), 401, label="GET /api/me (anonymous)")
        print("ok: GET /api/me -> 401")

        login = client.get("/api/auth/spotify/login", follow_redirects=False)
        _expect(login, 302, label="GET /api/auth/spotify/login")
        if not login.headers["location"].startswith("https://accounts.spotify.com/authorize"):
            raise RuntimeError(f"unexpected login redirect: {login.headers['location']}")
        print("ok: GET /api/auth/spotify/login -> Spotify")

        logout = client.post("/api/auth/logout", headers={"x-csrf-token": csrf_token})
        _expect(logout, 200, label="POST /api/auth/logout")
        print("ok: POST /api/auth/logout")

    print(f"smoke complete: {base_url}")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # noqa: BLE001
        print(f"smoke failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
