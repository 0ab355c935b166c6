from __future__ import annotations

import base64
import os
import uuid
from collections.abc import Generator
from contextlib import suppress
from pathlib import Path

import pytest
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import Session

from alembic import command

TEST_ENV = {
    "APP_ENV": "test",
    "COOKIE_SECURE": "false",
    "SPOTIFY_CLIENT_ID": "test-spotify-client-id",
    "SPOTIFY_CLIENT_SECRET": "test-spotify-client-secret",
    "SPOTIFY_REDIRECT_URI": "http://testserver/api/auth/spotify/callback",
    "SPOTIFY_RETRY_BACKOFF_SECONDS": "0",
    "SESSION_SECRET": "test-session-secret",
    "ENCRYPTION_KEY_BASE64": base64.b64encode(b"r" * 32).decode("ascii"),
    "ENABLE_OTEL_TRACING": "false",
}

# Set before any app module is imported so module-level settings see test values.
for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)


def _make_admin_url(url: URL) -> URL:
    # "postgres" is present in the official image and works for admin tasks.
    return url.set(database="postgres")


def _make_test_db_name() -> str:
    return f"recordroulette_test_{uuid.uuid4().hex}"


@pytest.fixture(scope="session", autouse=True)
def _test_database(tmp_path_factory: pytest.TempPathFactory) -> Generator[None, None, None]:
    admin_engine = None
    db_name = None
    base_url = os.environ.get("DATABASE_URL")

    if base_url and make_url(base_url).get_backend_name() == "postgresql":
        url = make_url(base_url)
        if url.host not in {"localhost", "127.0.0.1", None}:
            raise RuntimeError(
                "Refusing to run tests against a non-local DATABASE_URL host. "
                "Set DATABASE_URL to a local/dev Postgres instance."
            )

        # Always create an isolated database rather than touching the dev one.
        db_name = _make_test_db_name()
        admin_engine = create_engine(
            _make_admin_url(url), isolation_level="AUTOCOMMIT", pool_pre_ping=True
        )
        with admin_engine.connect() as conn:
            conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        test_url = url.set(database=db_name).render_as_string(hide_password=False)
    else:
        db_path = tmp_path_factory.mktemp("db") / "recordroulette_test.sqlite3"
        test_url = f"sqlite:///{db_path}"

    os.environ["DATABASE_URL"] = test_url

    # Clear cached settings so everything created during the test session sees the test DB.
    from recordroulette.core.config import get_settings

    get_settings.cache_clear()

    alembic_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    command.upgrade(Config(str(alembic_ini)), "head")

    yield

    get_settings.cache_clear()
    if admin_engine is None:
        return

    with admin_engine.connect() as conn:
        with suppress(Exception):
            conn.execute(
                text(
                    """
                    SELECT pg_terminate_backend(pid)
                    FROM pg_stat_activity
                    WHERE datname = :db_name AND pid <> pg_backend_pid();
                    """
                ),
                {"db_name": db_name},
            )
        conn.execute(text(f'DROP DATABASE IF EXISTS "{db_name}"'))

    admin_engine.dispose()


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    from recordroulette.core.config import get_settings
    from recordroulette.db.session import Database

    database = Database(get_settings().DATABASE_URL)
    session = database.session()
    try:
        yield session
    finally:
        session.close()
        database.dispose()
