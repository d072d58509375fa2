from __future__ import annotations

import asyncio
import functools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional, Set, Tuple

from geoevents.domain.errors import CancellationSignal
from geoevents.domain.models import Event
from geoevents.domain.query import CacheKey, CanonicalQuery
from geoevents.providers.events.base import EventsProvider
from geoevents.sync.cache import CachedResult, ResultCache
from geoevents.sync.cancellation import CancellationToken, run_cancellable

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 50


@dataclass
class _Flight:
    key: CacheKey
    generation: int
    token: CancellationToken
    background: bool = False
    waiters: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class EventHub:
    """Shared entry point between consumers, the result cache and the provider.

    At most one network operation runs per cache key; later callers for the
    same key join it. A flight is aborted once every foreground waiter has
    left, unless it is a background refresh.
    """

    def __init__(
        self,
        provider: EventsProvider,
        cache: Optional[ResultCache] = None,
        *,
        max_errors: int = MAX_RECORDED_ERRORS,
    ) -> None:
        self._provider = provider
        self._cache = cache if cache is not None else ResultCache()
        self._inflight: Dict[CacheKey, _Flight] = {}
        self._background: Set[asyncio.Task] = set()
        self.network_fetches = 0
        # most recent background failures only
        self.errors: Deque[Tuple[CacheKey, Exception]] = deque(maxlen=max_errors)

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def provider(self) -> EventsProvider:
        return self._provider

    def lookup(self, key: CacheKey) -> Optional[CachedResult]:
        return self._cache.get(key)

    def is_inflight(self, key: CacheKey) -> bool:
        return key in self._inflight

    async def load(
        self,
        canonical: CanonicalQuery,
        *,
        force: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> Tuple[Event, ...]:
        """Resolve ``canonical`` from cache when possible, otherwise from the network.

        A stale hit is returned immediately and triggers one background
        refresh. ``force`` bypasses freshness but still joins an in-flight
        fetch for the same key.
        """
        if canonical.is_empty:
            return ()
        if not force:
            hit = self._cache.get(canonical.key)
            if hit is not None:
                if not hit.fresh:
                    self.revalidate(canonical)
                return hit.events
        return await self.fetch(canonical, token=token)

    async def fetch(
        self,
        canonical: CanonicalQuery,
        *,
        token: Optional[CancellationToken] = None,
        background: bool = False,
    ) -> Tuple[Event, ...]:
        """Join (or start) the single network flight for ``canonical.key``."""
        if canonical.is_empty:
            return ()
        flight = self._start_flight(canonical, background=background)
        flight.waiters += 1
        try:
            return await run_cancellable(asyncio.shield(flight.task), token)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.background and not flight.task.done():
                logger.debug("no consumer left for %s, aborting fetch", flight.key)
                flight.token.cancel("abandoned")

    def revalidate(self, canonical: CanonicalQuery) -> asyncio.Task:
        """Refresh ``canonical`` in the background without blocking the caller."""
        flight = self._start_flight(canonical, background=True)
        return flight.task

    async def join_background(self) -> None:
        """Wait for every background refresh scheduled so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        for flight in list(self._inflight.values()):
            flight.token.cancel("shutdown")
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._provider.aclose()

    def _start_flight(self, canonical: CanonicalQuery, *, background: bool) -> _Flight:
        flight = self._inflight.get(canonical.key)
        if flight is not None and not flight.token.cancelled:
            if background and not flight.background:
                flight.background = True
                self._background.add(flight.task)
            return flight
        flight = _Flight(
            key=canonical.key,
            generation=self._cache.begin(canonical.key),
            token=CancellationToken(),
            background=background,
        )
        flight.task = asyncio.ensure_future(self._run(flight, canonical))
        flight.task.add_done_callback(functools.partial(self._flight_done, flight))
        self._inflight[canonical.key] = flight
        if background:
            self._background.add(flight.task)
        return flight

    async def _run(self, flight: _Flight, canonical: CanonicalQuery) -> Tuple[Event, ...]:
        self.network_fetches += 1
        try:
            outcome = await self._provider.fetch_events(canonical.query, token=flight.token)
        finally:
            if self._inflight.get(flight.key) is flight:
                del self._inflight[flight.key]
        if outcome.cancelled:
            raise CancellationSignal(flight.token.reason)
        self._cache.set(flight.key, outcome.events, generation=flight.generation)
        return outcome.events

    def _flight_done(self, flight: _Flight, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        # always retrieve, so abandoned flights do not warn at garbage collection
        exc = task.exception()
        if exc is None or isinstance(exc, CancellationSignal):
            return
        if flight.background:
            # nobody awaits a background refresh; keep the failure observable
            self.errors.append((flight.key, exc))
            logger.warning("background refresh for %s failed: %s", flight.key, exc)
