# identity_sync/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from identity_sync.auth.clerk import (
    SessionTokenError,
    SessionTokenExpired,
    SessionTokenNotConfigured,
    SigningKeysUnavailable,
    verify_session_token,
)
from identity_sync.auth.identity import SessionIdentity
from identity_sync.core.database import get_db
from identity_sync.models.user import User
from identity_sync.services.users import get_user_by_subject_id

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Validates:
      - Authorization: Bearer <Clerk session token>
      - token signature, exp, issuer, audience
      - the subject has a synced user record
    Returns:
      - User SQLAlchemy model
    """
    if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise _unauthorized("Missing Authorization header")

    try:
        claims = verify_session_token(creds.credentials)
    except SessionTokenNotConfigured as exc:
        logger.error("Session token verification not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        ) from exc
    except SigningKeysUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is temporarily unavailable",
        ) from exc
    except SessionTokenExpired:
        raise _unauthorized("Session token has expired")
    except SessionTokenError as exc:
        logger.warning("Clerk token rejected (%s): %s", exc.reason, exc)
        raise _unauthorized("Invalid session token")

    subject_id = claims["sub"]
    user = get_user_by_subject_id(db, subject_id)
    if user is None:
        # Webhook sync may not have landed yet.
        raise _unauthorized("User not found")

    request.state.identity = SessionIdentity.from_claims(claims, user)
    return user


def get_session_identity(request: Request, user: User = Depends(get_current_user)) -> SessionIdentity:  # noqa: ARG001
    return request.state.identity
