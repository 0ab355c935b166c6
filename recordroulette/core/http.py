from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass

import httpx

from recordroulette.core.config import Settings, get_settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 4.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.SPOTIFY_MAX_ATTEMPTS,
            backoff_seconds=settings.SPOTIFY_RETRY_BACKOFF_SECONDS,
            max_backoff_seconds=settings.SPOTIFY_RETRY_MAX_BACKOFF_SECONDS,
        )


def get_http_client() -> Generator[httpx.Client, None, None]:
    # Centralize HTTP client configuration (timeouts, etc) so we can override in tests.
    settings = get_settings()
    with httpx.Client(timeout=settings.SPOTIFY_HTTP_TIMEOUT_SECONDS) as client:
        yield client


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings(get_settings())
