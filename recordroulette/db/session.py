from __future__ import annotations

from collections.abc import Generator
from typing import Any

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker


class Database:
    """Engine plus session factory, owned by whoever constructs it.

    The application factory builds one per app and disposes it on shutdown;
    tests and scripts build their own against the same URL.
    """

    def __init__(self, url: str) -> None:
        connect_args: dict[str, Any] = {}
        if make_url(url).get_backend_name() == "sqlite":
            # Request handlers run in a threadpool; sqlite connections are handed across threads.
            connect_args["check_same_thread"] = False

        self.engine: Engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
        self._sessionmaker = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    def session(self) -> Session:
        return self._sessionmaker()

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_session(request: Request) -> Generator[Session, None, None]:
    session = get_database(request).session()
    try:
        yield session
    finally:
        session.close()
