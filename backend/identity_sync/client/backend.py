"""
HTTP client for the application datastore API.

Constructed explicitly and passed to whatever needs it; there is no module-level
instance. The auth context is a token provider rather than a token: it is called
again for every request so short-lived session tokens refresh transparently.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from identity_sync.client.session import TokenProvider

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class BackendClientError(Exception):
    """Raised when the datastore API rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)
        self._token_provider: TokenProvider | None = None

    # ------------------------------------------------------------------
    # Auth context
    # ------------------------------------------------------------------
    def set_auth(self, provider: TokenProvider) -> None:
        self._token_provider = provider

    def clear_auth(self) -> None:
        self._token_provider = None

    @property
    def has_auth(self) -> bool:
        return self._token_provider is not None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        provider = self._token_provider
        headers = dict(kwargs.pop("headers", None) or {})

        token = await provider() if provider is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
            if response.status_code == 401 and provider is not None and provider is self._token_provider:
                # Token may have expired between fetch and use; retry once with a fresh one.
                refreshed = await provider(force_refresh=True)
                if refreshed and refreshed != token:
                    headers["Authorization"] = f"Bearer {refreshed}"
                    response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendClientError(f"Backend request failed: {exc}") from exc

        return response

    async def query(self, path: str, **params: Any) -> Any:
        response = await self.request("GET", path, params=params or None)
        if response.status_code >= 400:
            raise BackendClientError(
                f"Backend query {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendClientError(f"Backend query {path} returned invalid JSON") from exc

    async def current_user(self) -> dict[str, Any] | None:
        """The synced user record for the signed-in caller, or None when anonymous."""
        try:
            return await self.query("/api/users/me")
        except BackendClientError as exc:
            if exc.status_code == 401:
                return None
            raise

    async def aclose(self) -> None:
        await self._http.aclose()
