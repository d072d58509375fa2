from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Tuple

from geoevents.domain.errors import CancellationSignal, EventSyncError
from geoevents.domain.models import Event, Viewport
from geoevents.domain.query import CacheKey, CanonicalQuery, FilterState, canonicalize
from geoevents.hub.event_hub import EventHub

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

# Camera-pan consumers use ~75 ms, text-driven filter edits ~400 ms
DEFAULT_DEBOUNCE_SECONDS = 0.4


class Phase(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    FETCHING = "fetching"


@dataclass(frozen=True)
class FetchState:
    events: Tuple[Event, ...] = field(default_factory=tuple)
    loading: bool = False
    error: Optional[EventSyncError] = None


class EventsController:
    """Debounced bridge between a changing filter/viewport stream and the hub.

    Every ``set_filters``/``set_viewport`` (re)arms a trailing-edge timer.
    When it fires, the in-flight fetch for this controller is cancelled and
    a new one starts with the latest canonical query. Results are applied
    only if their token is still the current one, so the visible events
    always belong to the most recently issued query.

    Failures keep the last known-good events and set ``error``; nothing is
    retried until ``refetch()``.
    """

    def __init__(
        self,
        hub: EventHub,
        filters: FilterState,
        *,
        viewport: Optional[Viewport] = None,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        on_change: Optional[Callable[[FetchState], None]] = None,
    ) -> None:
        if debounce < 0:
            raise ValueError("debounce must be >= 0")
        canonicalize(filters, viewport)
        self._hub = hub
        self._filters = filters
        self._viewport = viewport
        self._debounce = debounce
        self._on_change = on_change
        self._state = FetchState()
        self._phase = Phase.IDLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._force_next = False
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._inflight_key: Optional[CacheKey] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    # read API

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def events(self) -> Tuple[Event, ...]:
        return self._state.events

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> Optional[EventSyncError]:
        return self._state.error

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def debounce(self) -> float:
        return self._debounce

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def viewport(self) -> Optional[Viewport]:
        return self._viewport

    # inputs

    def set_filters(self, filters: FilterState) -> None:
        """Raises InvalidRangeError synchronously; the previous filters stay active."""
        self._ensure_open()
        canonicalize(filters, self._viewport)
        self._filters = filters
        self._schedule()

    def set_viewport(self, viewport: Optional[Viewport]) -> None:
        self._ensure_open()
        self._viewport = viewport
        self._schedule()

    def start(self) -> None:
        """Arm the first fetch for the initial filters."""
        self._ensure_open()
        self._schedule()

    def refetch(self) -> None:
        """Fetch now, bypassing debounce and cache freshness."""
        self._ensure_open()
        self._cancel_timer()
        self._fire(force=True)

    def cancel(self) -> None:
        """Drop the pending timer and in-flight fetch; events and error are left untouched."""
        self._cancel_timer()
        self._cancel_inflight("cancelled")
        if self._state.loading:
            self._apply(replace(self._state, loading=False))
        self._set_phase(Phase.IDLE)

    async def settled(self) -> FetchState:
        """Wait until no timer is armed and no fetch is running."""
        while True:
            await self._idle.wait()
            # a listener may have re-armed the timer while we were waking up
            if self._phase is Phase.IDLE:
                return self._state

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = self._task
        self.cancel()
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def __aenter__(self) -> "EventsController":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # state machine

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_timer()
        self._set_phase(Phase.PENDING)
        self._timer = loop.call_later(self._debounce, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._fire(force=False)

    def _fire(self, *, force: bool) -> None:
        canonical = canonicalize(self._filters, self._viewport)
        if (
            not force
            and self._task is not None
            and not self._task.done()
            and self._inflight_key == canonical.key
        ):
            # same query already on its way; nothing is stale
            self._set_phase(Phase.FETCHING)
            return

        self._cancel_inflight("superseded")
        if canonical.is_empty:
            self._apply(FetchState(events=(), loading=False, error=None))
            self._set_phase(Phase.IDLE)
            return

        revalidate = False
        if not force:
            hit = self._hub.lookup(canonical.key)
            if hit is not None:
                self._apply(FetchState(events=hit.events, loading=False, error=None))
                if hit.fresh:
                    self._set_phase(Phase.IDLE)
                    return
                revalidate = True

        token = CancellationToken()
        self._token = token
        self._inflight_key = canonical.key
        if not revalidate:
            self._apply(replace(self._state, loading=True, error=None))
        self._set_phase(Phase.FETCHING)
        self._task = asyncio.ensure_future(self._run(canonical, token, background=revalidate))

    async def _run(self, canonical: CanonicalQuery, token: CancellationToken, *, background: bool) -> None:
        try:
            events = await self._hub.fetch(canonical, token=token, background=background)
        except CancellationSignal:
            if token is self._token:
                # aborted underneath us (hub shutdown), not superseded
                self._apply(replace(self._state, loading=False))
                self._finish(token)
            else:
                logger.debug("discarding superseded fetch for %s", canonical.key)
            return
        except EventSyncError as exc:
            if token is not self._token:
                return
            logger.info("events fetch failed for %s: %s", canonical.key, exc)
            self._apply(replace(self._state, loading=False, error=exc))
            self._finish(token)
            return
        if token is not self._token or token.cancelled:
            return
        self._apply(FetchState(events=events, loading=False, error=None))
        self._finish(token)

    def _finish(self, token: CancellationToken) -> None:
        if token is self._token:
            self._token = None
            self._inflight_key = None
            if self._timer is None:
                self._set_phase(Phase.IDLE)

    def _apply(self, state: FetchState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_change is not None:
            self._on_change(state)

    def _set_phase(self, phase: Phase) -> None:
        self._phase = phase
        if phase is Phase.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_inflight(self, reason: str) -> None:
        if self._token is not None:
            self._token.cancel(reason)
            self._token = None
        self._inflight_key = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("controller is closed")
