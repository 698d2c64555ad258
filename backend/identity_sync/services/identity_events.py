"""
Normalize verified Clerk webhook payloads into canonical identity events.

Only the ``user.*`` lifecycle events are understood. Any other event type is
reported as ``UnsupportedEventKind`` so the endpoint can acknowledge it without
the provider retrying.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from identity_sync.schemas.webhook import ClerkUserData, WebhookEnvelope


class IdentityEventKind(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"


class IdentityEventParseError(Exception):
    """Raised when a verified payload is not a well-formed user event."""


class UnsupportedEventKind(Exception):
    """Raised for event types this service intentionally ignores."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unsupported event type: {kind}")
        self.kind = kind


@dataclass(frozen=True)
class IdentityEvent:
    kind: IdentityEventKind
    subject_id: str
    email: str | None = None
    display_name: str | None = None
    image_url: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def display_name(first_name: str | None, last_name: str | None) -> str | None:
    """``"First Last"`` when a first name exists; a last name alone is not enough."""
    if not _clean(first_name):
        return None
    return _clean(f"{first_name} {last_name or ''}")


def primary_email(data: ClerkUserData) -> str | None:
    addresses = [a for a in data.email_addresses if _clean(a.email_address)]
    if not addresses:
        return None
    if data.primary_email_address_id:
        for address in addresses:
            if address.id == data.primary_email_address_id:
                return _clean(address.email_address)
    return _clean(addresses[0].email_address)


def normalize_event(verified_body: bytes) -> IdentityEvent:
    try:
        envelope = WebhookEnvelope.model_validate_json(verified_body)
    except ValidationError as exc:
        raise IdentityEventParseError(f"Malformed webhook envelope: {exc.error_count()} error(s)") from exc

    try:
        kind = IdentityEventKind(envelope.type)
    except ValueError:
        raise UnsupportedEventKind(envelope.type) from None

    try:
        data = ClerkUserData.model_validate(envelope.data)
    except ValidationError as exc:
        raise IdentityEventParseError("Webhook payload is missing the user id") from exc

    subject_id = _clean(data.id)
    if not subject_id:
        raise IdentityEventParseError("Webhook payload is missing the user id")

    return IdentityEvent(
        kind=kind,
        subject_id=subject_id,
        email=primary_email(data),
        display_name=display_name(data.first_name, data.last_name),
        image_url=_clean(data.image_url),
    )
