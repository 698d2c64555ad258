"""
Svix webhook signature verification.

Clerk delivers user lifecycle webhooks through Svix. Each delivery carries three
headers (``svix-id``, ``svix-timestamp``, ``svix-signature``); the Svix SDK checks
the HMAC signature and the five minute timestamp window.

Verification works on the raw request bytes and returns them untouched, so the
payload that gets parsed is exactly the payload that was signed.
"""
from __future__ import annotations

import json
from typing import Mapping

from svix.webhooks import Webhook
from svix.webhooks import WebhookVerificationError as SvixVerificationError

ID_HEADER = "svix-id"
TIMESTAMP_HEADER = "svix-timestamp"
SIGNATURE_HEADER = "svix-signature"
REQUIRED_HEADERS = (ID_HEADER, TIMESTAMP_HEADER, SIGNATURE_HEADER)

SECRET_PREFIX = "whsec_"


class WebhookSecretError(Exception):
    """Raised when the configured signing secret is missing or malformed."""


class WebhookVerificationError(Exception):
    """Base error for deliveries that fail verification."""

    check = "verification"


class MissingHeadersError(WebhookVerificationError):
    """Raised when one or more signature headers are absent."""

    check = "missing_headers"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing webhook headers: {', '.join(missing)}")
        self.missing = missing


class InvalidSignatureError(WebhookVerificationError):
    """Raised when the signature does not match or the timestamp is out of range."""

    check = "invalid_signature"


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette's Headers are not.
        lowered = {k.lower(): v for k, v in headers.items()}
        value = lowered.get(name)
    return (value or "").strip()


def load_webhook(secret: str | None) -> Webhook:
    """Build the Svix verifier for ``secret`` (``whsec_`` prefix optional)."""
    raw = (secret or "").strip()
    if not raw or raw == SECRET_PREFIX:
        raise WebhookSecretError("Webhook signing secret is not configured")
    try:
        return Webhook(raw)
    except (RuntimeError, ValueError) as exc:
        raise WebhookSecretError("Webhook signing secret is not valid base64") from exc


def verify_webhook(raw_body: bytes, headers: Mapping[str, str], secret: str | None) -> bytes:
    """
    Verify a Svix-signed delivery.

    Returns:
        ``raw_body`` unchanged.

    Raises:
        MissingHeadersError: a required header is absent (checked first).
        WebhookSecretError: the secret is empty or undecodable.
        InvalidSignatureError: bad timestamp, stale timestamp, or no matching signature.
    """
    values = {name: _header(headers, name) for name in REQUIRED_HEADERS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingHeadersError(missing)

    webhook = load_webhook(secret)

    try:
        webhook.verify(raw_body, values)
    except json.JSONDecodeError:
        # The SDK parses the body only after a signature matched; parsing is the normalizer's job.
        return raw_body
    except UnicodeDecodeError as exc:
        raise InvalidSignatureError("Webhook body is not valid UTF-8") from exc
    except SvixVerificationError as exc:
        raise InvalidSignatureError(f"Invalid webhook signature: {exc}") from exc
    except ValueError as exc:
        # Malformed signature entries (no version separator, bad base64).
        raise InvalidSignatureError("Malformed webhook signature header") from exc

    return raw_body
