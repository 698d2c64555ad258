# identity_sync/auth/identity.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from identity_sync.models.user import User


@dataclass(frozen=True)
class SessionIdentity:
    """The caller of an authenticated request: a verified Clerk session linked to a synced user."""

    subject_id: str
    user_id: int
    email: str | None = None
    session_id: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any], user: User) -> SessionIdentity:
        email = claims.get("email") or user.email
        exp = claims.get("exp")
        return cls(
            subject_id=claims["sub"],
            user_id=user.id,
            email=email.strip().lower() if email else None,
            session_id=claims.get("sid"),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None,
        )
