"""Profile endpoints used by chat clients."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import commit_session, get_db
from app.models import User
from app.schemas import PushTokenUpdate, UserRead

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("/me", response_model=UserRead)
def read_profile(current_user: User = Depends(get_current_user)) -> UserRead:
    """Return profile information for the authenticated user."""

    return UserRead.model_validate(current_user, from_attributes=True)


@router.put("/push-token", response_model=UserRead)
def update_push_token(
    payload: PushTokenUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    """Store the push token of the caller's device; ``null`` removes it."""

    current_user.push_token = payload.token
    commit_session(db)
    db.refresh(current_user)
    return UserRead.model_validate(current_user, from_attributes=True)
