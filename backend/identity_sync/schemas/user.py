from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserMeOut(BaseModel):
    id: int
    subject_id: str
    email: str
    name: str | None = None
    image: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionOut(BaseModel):
    subject_id: str
    user_id: int
    email: str | None = None
    session_id: str | None = None
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
