from __future__ import annotations

import logging
from uuid import UUID

from itsdangerous import BadData, URLSafeTimedSerializer

from recordroulette.core.config import Settings

logger = logging.getLogger("recordroulette.api")

SESSION_SALT = "recordroulette-session-v1"


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=settings.SESSION_SECRET, salt=SESSION_SALT)


def issue_session_token(settings: Settings, *, user_id: UUID) -> str:
    # Only the internal id goes in the cookie; profile data and Spotify tokens stay server-side.
    return _serializer(settings).dumps({"userId": str(user_id)})


def read_session_user_id(settings: Settings, value: str | None) -> UUID | None:
    if not value:
        return None

    try:
        data = _serializer(settings).loads(value, max_age=settings.SESSION_TTL_SECONDS)
    except BadData as e:
        logger.info("Rejected session cookie: %s", type(e).__name__)
        return None

    if not isinstance(data, dict):
        return None
    raw_user_id = data.get("userId")
    if not isinstance(raw_user_id, str):
        return None
    try:
        return UUID(raw_user_id)
    except ValueError:
        return None
