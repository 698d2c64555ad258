"""
Delivery ledger for identity webhooks.

Every verified delivery is recorded by its Svix message id. A message that was
already processed is skipped; one that is still pending or previously failed is
claimed again so provider retries get a real second attempt.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from identity_sync.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 500


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get(db: Session, message_id: str) -> WebhookEvent | None:
    return db.query(WebhookEvent).filter(WebhookEvent.message_id == message_id).one_or_none()


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode == "23505":
        return True
    message = str(orig or exc)
    return "webhook_events_message_id" in message or "UNIQUE constraint failed: webhook_events.message_id" in message


def claim_delivery(
    db: Session,
    *,
    message_id: str,
    event_type: str,
    subject_id: str | None,
    payload: dict[str, Any],
) -> bool:
    """
    Record a delivery as pending.

    Returns False only when the message was already processed successfully.
    """
    record = WebhookEvent(
        message_id=message_id,
        event_type=event_type,
        subject_id=subject_id,
        payload=payload,
        status=WebhookEventStatus.PENDING.value,
    )
    try:
        db.add(record)
        db.commit()
        return True
    except IntegrityError as exc:
        db.rollback()
        if not _is_unique_violation(exc):
            raise
    finally:
        if record in db:
            db.expunge(record)

    existing = _get(db, message_id)
    if existing is None:
        return True
    if existing.status == WebhookEventStatus.PROCESSED.value:
        logger.info("Webhook message %s already processed; skipping", message_id)
        return False

    logger.info("Webhook message %s redelivered after status=%s; reprocessing", message_id, existing.status)
    existing.status = WebhookEventStatus.PENDING.value
    existing.error_message = None
    db.commit()
    return True


def mark_delivery(
    db: Session,
    message_id: str,
    status: WebhookEventStatus,
    *,
    result: str | None = None,
    error: str | None = None,
) -> None:
    record = _get(db, message_id)
    if not record:
        return
    record.status = status.value
    record.result = result
    record.error_message = error[:MAX_ERROR_MESSAGE_LENGTH] if error else None
    record.processed_at = _now()
    db.commit()
