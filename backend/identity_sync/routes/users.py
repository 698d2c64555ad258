from __future__ import annotations

from fastapi import APIRouter, Depends

from identity_sync.auth.identity import SessionIdentity
from identity_sync.dependencies.auth import get_current_user, get_session_identity
from identity_sync.models.user import User
from identity_sync.schemas.user import SessionOut, UserMeOut

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserMeOut)
def get_me(user: User = Depends(get_current_user)) -> User:
    return user


@router.get("/me/session", response_model=SessionOut)
def get_my_session(identity: SessionIdentity = Depends(get_session_identity)) -> SessionIdentity:
    return identity
