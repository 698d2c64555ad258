from __future__ import annotations

import logging

import httpx

from identity_sync.core.config import settings

logger = logging.getLogger(__name__)

CLERK_TIMEOUT = 5.0


class TokenFetchError(Exception):
    """Raised when Clerk cannot mint a session token."""


class ClerkSessionTokenFetcher:
    """
    Mints session tokens for one Clerk session through the Backend API.

    ``POST /v1/sessions/{session_id}/tokens/{template}`` always returns a freshly
    signed JWT, so ``skip_cache`` needs no special handling.
    """

    def __init__(
        self,
        session_id: str | None,
        *,
        secret_key: str | None = None,
        api_url: str | None = None,
        timeout: float = CLERK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_id = session_id
        self._secret_key = secret_key if secret_key is not None else settings.CLERK_SECRET_KEY
        self._http = httpx.AsyncClient(
            base_url=(api_url or settings.CLERK_API_URL).rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def get_token(self, *, template: str | None = None, skip_cache: bool = False) -> str | None:
        if not self.session_id:
            return None
        if not self._secret_key:
            raise TokenFetchError("Clerk secret key is not configured")

        path = f"/v1/sessions/{self.session_id}/tokens"
        if template:
            path = f"{path}/{template}"

        try:
            response = await self._http.post(path, headers={"Authorization": f"Bearer {self._secret_key}"})
        except httpx.HTTPError as exc:
            raise TokenFetchError("Unable to reach Clerk") from exc

        if response.status_code == 404:
            logger.info("Clerk session %s not found; no token issued", self.session_id)
            return None
        if response.status_code >= 400:
            raise TokenFetchError(f"Clerk token request failed with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenFetchError("Invalid Clerk token response") from exc

        token = payload.get("jwt") if isinstance(payload, dict) else None
        return token or None

    async def aclose(self) -> None:
        await self._http.aclose()
