from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # The web client reads camelCase keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MeResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider: str
    display_name: str | None
    email: str | None
    avatar_url: str | None
    onboarding_completed: bool
    created_at: datetime


class OnboardingResponse(CamelModel):
    success: bool


class PlaybackResponse(CamelModel):
    success: bool
    playback_method: str  # api|url
    requires_device: bool = False
    spotify_url: str | None = None
    message: str | None = None
