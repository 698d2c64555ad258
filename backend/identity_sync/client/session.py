"""
Session token lifecycle for the backend client.

The manager follows the IdP's sign-in status and keeps the backend client's auth
context in step with it:

- signed in: fetch a token for the datastore template, then install a provider
  that fetches a fresh token each time the client asks (tokens are short-lived)
- signed out: clear the auth context immediately

Transitions are handled one at a time in arrival order. A newer transition
supersedes any token fetch still in flight; a superseded fetch never installs
anything, even if its result shows up late.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterable, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

TokenProvider = Callable[..., Awaitable[Optional[str]]]


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class TokenFetcher(Protocol):
    async def get_token(self, *, template: str | None = None, skip_cache: bool = False) -> str | None:
        ...


class BackendAuth(Protocol):
    def set_auth(self, provider: TokenProvider) -> None:
        ...

    def clear_auth(self) -> None:
        ...


class SessionTokenManager:
    def __init__(
        self,
        token_fetcher: TokenFetcher,
        backend: BackendAuth,
        *,
        template: str | None = "convex",
    ) -> None:
        self._fetcher = token_fetcher
        self._backend = backend
        self._template = template
        self._state = SessionState.UNINITIALIZED
        self._authenticated = False
        self._generation = 0
        self._inflight: asyncio.Task | None = None
        self._ready = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.READY and self._authenticated

    def should_render(self) -> bool:
        """Components that issue authenticated queries render only once the auth context is settled."""
        return self._state is SessionState.READY

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    async def run(self, transitions: AsyncIterable[bool]) -> None:
        """Consume sign-in transitions until the stream ends, then settle the last one."""
        try:
            async for signed_in in transitions:
                self.handle_transition(signed_in)
            await self._settle()
        finally:
            self._cancel_inflight()

    def handle_transition(self, signed_in: bool) -> None:
        """Apply one transition. Must be called from the running event loop."""
        self._generation += 1
        generation = self._generation
        self._cancel_inflight()

        if not signed_in:
            self._backend.clear_auth()
            self._finish(authenticated=False)
            logger.info("Signed out; backend auth cleared")
            return

        self._state = SessionState.LOADING
        self._ready.clear()
        self._inflight = asyncio.create_task(self._install_token(generation))

    async def aclose(self) -> None:
        task = self._inflight
        self._cancel_inflight()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _install_token(self, generation: int) -> None:
        try:
            token = await self._fetcher.get_token(template=self._template)
        except Exception:
            logger.warning("Token fetch failed; continuing without backend auth", exc_info=True)
            token = None

        if generation != self._generation:
            logger.info("Discarding token fetched for superseded sign-in (generation %s)", generation)
            return

        if not token:
            self._backend.clear_auth()
            self._finish(authenticated=False)
            logger.warning("No session token available; backend client left anonymous")
            return

        self._backend.set_auth(self._provider(generation))
        self._finish(authenticated=True)
        logger.info("Installed backend auth provider (generation %s)", generation)

    def _provider(self, generation: int) -> TokenProvider:
        async def fetch_token(force_refresh: bool = False) -> str | None:
            if generation != self._generation:
                return None
            return await self._fetcher.get_token(template=self._template, skip_cache=force_refresh)

        return fetch_token

    def _finish(self, *, authenticated: bool) -> None:
        self._authenticated = authenticated
        self._state = SessionState.READY
        self._ready.set()

    def _cancel_inflight(self) -> None:
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            task.cancel()

    async def _settle(self) -> None:
        task = self._inflight
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
