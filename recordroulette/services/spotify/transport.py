from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from recordroulette.core.http import RetryPolicy

logger = logging.getLogger("recordroulette.api")


class SpotifyApiError(RuntimeError):
    def __init__(
        self, *, status_code: int | None, message: str, retry_after: float | None = None
    ) -> None:
        super().__init__(message)
        # None means the request never got a response (timeout, connection reset, ...).
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SpotifyApiError) and exc.retryable


def _parse_retry_after(value: str | None) -> float | None:
    # Spotify sends delta-seconds; HTTP-date values are ignored and fall back to backoff.
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _build_wait(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    backoff = wait_exponential(multiplier=policy.backoff_seconds, max=policy.max_backoff_seconds)

    def wait(state: RetryCallState) -> float:
        exc = state.outcome.exception() if state.outcome is not None else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return min(retry_after, policy.max_backoff_seconds)
        return backoff(state)

    return wait


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome is not None else None
    logger.warning(
        "Spotify request failed (attempt %s, status=%s); retrying",
        state.attempt_number,
        getattr(exc, "status_code", None),
    )


def _send_once(
    client: httpx.Client, method: str, url: str, *, label: str, **kwargs: Any
) -> httpx.Response:
    try:
        res = client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise SpotifyApiError(status_code=None, message=f"{label}: {type(e).__name__}") from e

    if res.status_code >= 400:
        # Don't carry the upstream body; it may echo codes or tokens back.
        raise SpotifyApiError(
            status_code=res.status_code,
            message=f"{label} failed with HTTP {res.status_code}",
            retry_after=(
                _parse_retry_after(res.headers.get("Retry-After"))
                if res.status_code == 429
                else None
            ),
        )
    return res


def send(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    label: str,
    **kwargs: Any,
) -> httpx.Response:
    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_build_wait(policy),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(_send_once, client, method, url, label=label, **kwargs)
