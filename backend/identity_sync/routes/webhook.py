from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from identity_sync.core.config import settings
from identity_sync.core.database import get_db
from identity_sync.models.webhook_event import WebhookEventStatus
from identity_sync.schemas.webhook import WebhookAckOut
from identity_sync.services.identity_events import (
    IdentityEventParseError,
    UnsupportedEventKind,
    normalize_event,
)
from identity_sync.services.users import ReconciliationError, reconcile_identity_event
from identity_sync.services.webhook_events import claim_delivery, mark_delivery
from identity_sync.services.webhook_signature import (
    ID_HEADER,
    MissingHeadersError,
    WebhookSecretError,
    WebhookVerificationError,
    verify_webhook,
)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

logger = logging.getLogger(__name__)


def _reject(exc: WebhookVerificationError) -> HTTPException:
    details: dict[str, Any] = {"check": exc.check}
    if isinstance(exc, MissingHeadersError):
        details["missing"] = exc.missing
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": str(exc), "details": details},
    )


def _record_outcome(
    db: Session,
    message_id: str,
    outcome: WebhookEventStatus,
    *,
    result: str | None = None,
    error: str | None = None,
) -> None:
    # A failed ledger write never changes the response.
    try:
        mark_delivery(db, message_id, outcome, result=result, error=error)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unable to mark webhook %s as %s", message_id, outcome.value)


@router.get("")
def webhook_liveness() -> dict[str, str]:
    return {"message": "Identity webhook endpoint. Send POST requests here."}


@router.post("", response_model=WebhookAckOut, response_model_exclude_none=True)
async def identity_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> WebhookAckOut:
    body = await request.body()

    try:
        verified = verify_webhook(
            body,
            request.headers,
            settings.CLERK_WEBHOOK_SECRET,
        )
    except WebhookVerificationError as exc:
        logger.warning("Rejected identity webhook: %s", exc)
        raise _reject(exc) from exc
    except WebhookSecretError as exc:
        logger.error("Identity webhook secret misconfigured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook verification is not configured",
        ) from exc

    try:
        event = normalize_event(verified)
    except UnsupportedEventKind as exc:
        logger.info("Ignoring unsupported webhook event type: %s", exc.kind)
        return WebhookAckOut(ignored=True, event_type=exc.kind)
    except IdentityEventParseError as exc:
        logger.warning("Unparseable identity webhook: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "details": {"check": "payload"}},
        ) from exc

    message_id = request.headers.get(ID_HEADER, "")
    logger.info("Received identity webhook %s: %s for %s", message_id, event.kind.value, event.subject_id)

    diagnostics = {"event_kind": event.kind.value, "subject_id": event.subject_id}
    try:
        claimed = claim_delivery(
            db,
            message_id=message_id,
            event_type=event.kind.value,
            subject_id=event.subject_id,
            payload=json.loads(verified),
        )
        if not claimed:
            return WebhookAckOut(duplicate=True)

        result = reconcile_identity_event(db, event, upsert_on_update=settings.WEBHOOK_UPSERT_ON_UPDATE)
    except ReconciliationError as exc:
        logger.error("Identity webhook %s failed for %s: %s", event.kind.value, event.subject_id, exc)
        _record_outcome(db, message_id, WebhookEventStatus.FAILED, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Error processing webhook", "details": diagnostics},
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected error processing identity webhook %s", message_id)
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Error processing webhook", "details": diagnostics},
        ) from exc

    _record_outcome(db, message_id, WebhookEventStatus.PROCESSED, result=result.action.value)
    return WebhookAckOut(action=result.action.value)
