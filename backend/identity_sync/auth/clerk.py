# identity_sync/auth/clerk.py
"""
Clerk session token verification.

Tokens minted from the datastore JWT template are RS256 JWTs signed with one of
the Clerk instance's JWKS keys. The signature is checked by python-jose; issuer,
audience and subject are checked here against settings so each failure carries
a precise ``reason``.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from identity_sync.core.config import settings

logger = logging.getLogger(__name__)

JWKS_TIMEOUT = 10.0
# Minimum gap between refetches triggered by an unknown kid.
MIN_REFETCH_SECONDS = 30.0


class SessionTokenError(Exception):
    """A session token that cannot be trusted."""

    reason = "invalid"


class SessionTokenNotConfigured(SessionTokenError):
    reason = "not_configured"


class SigningKeysUnavailable(SessionTokenError):
    reason = "jwks_unavailable"


class SessionTokenExpired(SessionTokenError):
    reason = "expired"


class SessionTokenRejected(SessionTokenError):
    """Raised with a ``reason`` of malformed, unknown_key, signature, claims, issuer, audience or subject."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class SigningKeyStore:
    """
    Clerk JWKS entries by ``kid``, fetched lazily.

    The set is refetched once it is older than ``CLERK_JWKS_CACHE_SECONDS``, and
    early when a token names a kid we have not seen (key rotation), no more than
    once per ``MIN_REFETCH_SECONDS``.
    """

    def __init__(self, min_refetch_seconds: float = MIN_REFETCH_SECONDS) -> None:
        self._lock = threading.Lock()
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at: float | None = None
        self._min_refetch_seconds = min_refetch_seconds

    def get(self, kid: str) -> dict[str, Any]:
        with self._lock:
            now = time.monotonic()
            age = None if self._fetched_at is None else now - self._fetched_at
            if age is None or age > settings.CLERK_JWKS_CACHE_SECONDS:
                self._refresh(now)
            elif kid not in self._keys and age >= self._min_refetch_seconds:
                logger.info("Unknown signing key %s; refetching Clerk JWKS", kid)
                self._refresh(now)
            key = self._keys.get(kid)

        if key is None:
            raise SessionTokenRejected("unknown_key", f"No Clerk signing key with kid {kid}")
        return key

    def clear(self) -> None:
        with self._lock:
            self._keys = {}
            self._fetched_at = None

    def _refresh(self, now: float) -> None:
        url = settings.clerk_jwks_url
        if not url:
            raise SessionTokenNotConfigured("Clerk JWKS URL not configured")

        try:
            response = httpx.get(url, timeout=JWKS_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch Clerk JWKS from %s: %s", url, exc)
            raise SigningKeysUnavailable("Clerk signing keys are unavailable") from exc

        entries = payload.get("keys") if isinstance(payload, dict) else None
        keys = {
            entry["kid"]: entry
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("kid") and entry.get("kty") == "RSA"
        }
        if not keys:
            raise SigningKeysUnavailable("Clerk JWKS response has no RSA keys")

        self._keys = keys
        self._fetched_at = now
        logger.info("Loaded %d Clerk signing keys", len(keys))


signing_keys = SigningKeyStore()


def _audiences(claims: dict[str, Any]) -> list[str]:
    aud = claims.get("aud")
    if isinstance(aud, str):
        return [aud]
    if isinstance(aud, list):
        return [a for a in aud if isinstance(a, str)]
    return []


def verify_session_token(token: str) -> dict[str, Any]:
    """Return the claims of a valid Clerk session token, or raise a ``SessionTokenError``."""
    issuer = settings.CLERK_ISSUER
    if not issuer:
        raise SessionTokenNotConfigured("Clerk not configured (CLERK_ISSUER required)")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise SessionTokenRejected("malformed", "Session token is not a JWT") from exc

    kid = header.get("kid")
    if not kid:
        raise SessionTokenRejected("malformed", "Session token header has no 'kid'")

    key = signing_keys.get(kid)

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            options={"verify_aud": False, "verify_iss": False},
        )
    except ExpiredSignatureError as exc:
        raise SessionTokenExpired("Session token has expired") from exc
    except JWTClaimsError as exc:
        raise SessionTokenRejected("claims", f"Session token claims are invalid: {exc}") from exc
    except JWTError as exc:
        raise SessionTokenRejected("signature", f"Session token signature is invalid: {exc}") from exc

    if str(claims.get("iss", "")).rstrip("/") != issuer:
        raise SessionTokenRejected("issuer", f"Unexpected token issuer {claims.get('iss')!r}")

    audience = settings.CLERK_JWT_AUDIENCE
    if audience and audience not in _audiences(claims):
        raise SessionTokenRejected("audience", f"Token was not minted for audience {audience!r}")

    if not claims.get("sub"):
        raise SessionTokenRejected("subject", "Session token has no subject")

    return claims
