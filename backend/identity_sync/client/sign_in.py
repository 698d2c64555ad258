"""Sign-in status notifications from the IdP, as restartable async streams."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

_CLOSED = object()


class SignInStatusFeed:
    """
    Fan-out of IdP sign-in status changes.

    ``publish`` is called by whatever observes the IdP (SDK callback, polling
    adapter, test). Each ``subscribe()`` call returns an independent stream that
    starts with the current status, if known, and then yields every change.
    Repeating the current status is not a change and is not emitted.
    """

    def __init__(self, initial: bool | None = None) -> None:
        self._status = initial
        self._subscribers: set[asyncio.Queue] = set()
        self._closed = False

    @property
    def status(self) -> bool | None:
        return self._status

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, signed_in: bool) -> None:
        if self._closed:
            raise RuntimeError("SignInStatusFeed is closed")
        if signed_in == self._status:
            return
        self._status = signed_in
        logger.debug("Sign-in status changed: signed_in=%s (%d subscribers)", signed_in, len(self._subscribers))
        for queue in self._subscribers:
            queue.put_nowait(signed_in)

    async def subscribe(self) -> AsyncIterator[bool]:
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        if self._status is not None:
            queue.put_nowait(self._status)
        self._subscribers.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers.discard(queue)

    def close(self) -> None:
        """End every open subscription after it drains pending changes."""
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(_CLOSED)
