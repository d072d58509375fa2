from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from geoevents.domain.errors import CancellationSignal

T = TypeVar("T")


class CancellationToken:
    """Per-fetch cancellation token, owned by whoever issued the fetch."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationSignal(self.reason)

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    When the token wins, the underlying task is cancelled (aborting the HTTP
    transfer where the transport supports it) and :class:`CancellationSignal`
    is raised.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancellationSignal(token.reason)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task.cancel()
        waiter.cancel()
        raise
    waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    raise CancellationSignal(token.reason)
