# identity_sync/services/users.py
"""
User record reconciliation.

Responsibilities:
- Indexed lookup of the local user record by IdP subject id
- Applying user.created / user.updated / user.deleted events idempotently
- Resolving concurrent duplicate creates through the subject_id unique constraint

Webhooks are delivered at least once, so every operation here must leave the
same end state no matter how many times the same event is applied.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from identity_sync.models.user import User
from identity_sync.services.identity_events import IdentityEvent, IdentityEventKind

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Base error for failed user mutations. Safe to retry."""


class MissingRequiredFieldError(ReconciliationError):
    """Raised when an event lacks a field the mutation cannot proceed without."""

    def __init__(self, field: str, subject_id: str) -> None:
        super().__init__(f"Event for {subject_id} is missing required field '{field}'")
        self.field = field
        self.subject_id = subject_id


class ReconcileAction(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    DELETED = "deleted"
    ALREADY_DELETED = "already_deleted"


@dataclass(frozen=True)
class ReconcileResult:
    action: ReconcileAction
    user_id: int | None = None


# ---------------------------------------------------------------------------
# Datastore access
# ---------------------------------------------------------------------------


def get_user_by_subject_id(db: Session, subject_id: str) -> Optional[User]:
    """Look up a user by their IdP subject identifier."""
    return db.query(User).filter(User.subject_id == subject_id).one_or_none()


def insert_user(
    db: Session,
    *,
    subject_id: str,
    email: str,
    name: str | None = None,
    image: str | None = None,
) -> User:
    user = User(subject_id=subject_id, email=email, name=name, image=image)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def patch_user(db: Session, user: User, fields: dict[str, Any]) -> User:
    for key, value in fields.items():
        setattr(user, key, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user: User) -> None:
    db.delete(user)
    db.commit()


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode == "23505":
        return True
    message = str(orig or exc)
    return "users_subject_id" in message or "UNIQUE constraint failed: users.subject_id" in message


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def create_user(db: Session, event: IdentityEvent) -> ReconcileResult:
    existing = get_user_by_subject_id(db, event.subject_id)
    if existing:
        logger.warning("User %s already exists (id=%s); skipping creation", event.subject_id, existing.id)
        return ReconcileResult(ReconcileAction.ALREADY_EXISTS, existing.id)

    if not event.email:
        raise MissingRequiredFieldError("email", event.subject_id)

    try:
        user = insert_user(
            db,
            subject_id=event.subject_id,
            email=event.email,
            name=event.display_name,
            image=event.image_url,
        )
    except IntegrityError as exc:
        db.rollback()
        if not _is_unique_violation(exc):
            raise
        # Lost a race with a concurrent delivery of the same event.
        winner = get_user_by_subject_id(db, event.subject_id)
        if winner is None:
            raise
        logger.info("Concurrent create for %s resolved to existing user %s", event.subject_id, winner.id)
        return ReconcileResult(ReconcileAction.ALREADY_EXISTS, winner.id)

    logger.info("Created user id=%s for subject %s", user.id, event.subject_id)
    return ReconcileResult(ReconcileAction.CREATED, user.id)


def update_user(db: Session, event: IdentityEvent, *, upsert: bool = False) -> ReconcileResult:
    user = get_user_by_subject_id(db, event.subject_id)
    if user is None:
        if upsert and event.email:
            logger.warning("User %s not found for update; creating it", event.subject_id)
            return create_user(db, event)
        logger.warning("User %s not found for update; nothing to patch", event.subject_id)
        return ReconcileResult(ReconcileAction.NOT_FOUND, None)

    # Only fields carried by the event are written; absent ones keep their stored value.
    fields: dict[str, Any] = {}
    if event.email:
        fields["email"] = event.email
    if event.display_name:
        fields["name"] = event.display_name
    if event.image_url:
        fields["image"] = event.image_url

    changed = {k: v for k, v in fields.items() if getattr(user, k) != v}
    if changed:
        patch_user(db, user, changed)
        logger.info("Updated user id=%s for subject %s (%s)", user.id, event.subject_id, ", ".join(sorted(changed)))
    return ReconcileResult(ReconcileAction.UPDATED, user.id)


def remove_user(db: Session, event: IdentityEvent) -> ReconcileResult:
    user = get_user_by_subject_id(db, event.subject_id)
    if user is None:
        logger.info("User %s not found for deletion; already removed", event.subject_id)
        return ReconcileResult(ReconcileAction.ALREADY_DELETED, None)

    user_id = user.id
    delete_user(db, user)
    logger.info("Deleted user id=%s for subject %s", user_id, event.subject_id)
    return ReconcileResult(ReconcileAction.DELETED, user_id)


def reconcile_identity_event(
    db: Session,
    event: IdentityEvent,
    *,
    upsert_on_update: bool = False,
) -> ReconcileResult:
    """
    Apply a canonical identity event to the local user table.

    Raises:
        MissingRequiredFieldError: user.created without an email.
        ReconciliationError: any datastore failure (the provider will redeliver).
    """
    try:
        if event.kind is IdentityEventKind.USER_CREATED:
            return create_user(db, event)
        if event.kind is IdentityEventKind.USER_UPDATED:
            return update_user(db, event, upsert=upsert_on_update)
        return remove_user(db, event)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ReconciliationError(f"Datastore error while applying {event.kind.value}: {exc}") from exc
