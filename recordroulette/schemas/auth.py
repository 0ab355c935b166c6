from __future__ import annotations

from pydantic import BaseModel


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class LogoutResponse(BaseModel):
    ok: bool
