from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from recordroulette.core.deps import require_csrf_header, require_user
from recordroulette.db.session import get_session
from recordroulette.models.identity import User
from recordroulette.schemas.me import MeResponse, OnboardingResponse
from recordroulette.services.users import mark_onboarding_completed

router = APIRouter(prefix="/api/me", tags=["me"], dependencies=[Depends(require_csrf_header)])


@router.get("", response_model=MeResponse)
def me(user: User = Depends(require_user)) -> MeResponse:
    return MeResponse.model_validate(user)


@router.post("/onboarding", response_model=OnboardingResponse)
def complete_onboarding(
    user: User = Depends(require_user),
    session: Session = Depends(get_session),
) -> OnboardingResponse:
    mark_onboarding_completed(session=session, user=user)
    session.commit()
    return OnboardingResponse(success=True)
