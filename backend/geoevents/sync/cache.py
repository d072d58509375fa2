from __future__ import annotations

import itertools
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Sequence, Tuple

from geoevents.domain.models import Event

logger = logging.getLogger(__name__)

DEFAULT_FRESH_SECONDS = 60.0
DEFAULT_MAX_AGE_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 256


@dataclass(frozen=True)
class CachedResult:
    events: Tuple[Event, ...]
    stored_at: float
    age: float
    fresh: bool
    generation: int


@dataclass
class _Entry:
    events: Tuple[Event, ...]
    stored_at: float
    generation: int


class ResultCache:
    """Fetch results keyed by canonical query, shared by every consumer.

    Entries younger than ``fresh_seconds`` are served as fresh; older ones
    are still served (the caller revalidates in the background) until
    ``max_age_seconds``, after which they are dropped. ``max_entries``
    bounds the cache with least-recently-used eviction.

    Writes are ordered by generation, drawn from one cache-wide counter so
    nothing is kept per key beyond the entry itself. A ``set`` carrying an
    older generation than the stored entry is ignored, so a slow superseded fetch
    cannot resurrect stale data.

    Construct one per application and pass it to every hub; ``clear()`` on
    shutdown.
    """

    def __init__(
        self,
        *,
        fresh_seconds: float = DEFAULT_FRESH_SECONDS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if fresh_seconds < 0 or max_age_seconds < fresh_seconds:
            raise ValueError("expected 0 <= fresh_seconds <= max_age_seconds")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.fresh_seconds = fresh_seconds
        self.max_age_seconds = max_age_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, _Entry]" = OrderedDict()
        self._generation = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def now(self) -> float:
        return self._clock()

    def begin(self, key: Hashable) -> int:
        """Reserve the next write generation for ``key``."""
        return next(self._generation)

    def get(self, key: Hashable) -> Optional[CachedResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        age = now - entry.stored_at
        if age >= self.max_age_seconds:
            logger.debug("evicting expired cache entry %s (age=%.1fs)", key, age)
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return CachedResult(
            events=entry.events,
            stored_at=entry.stored_at,
            age=age,
            fresh=age < self.fresh_seconds,
            generation=entry.generation,
        )

    def set(
        self,
        key: Hashable,
        events: Sequence[Event],
        *,
        generation: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> bool:
        """Store ``events`` for ``key``; returns False when the write lost to a newer generation."""
        if generation is None:
            generation = self.begin(key)
        current = self._entries.get(key)
        if current is not None and current.generation > generation:
            logger.debug("dropping stale write for %s (generation %d < %d)", key, generation, current.generation)
            return False
        stored_at = self._clock() if timestamp is None else timestamp
        self._entries[key] = _Entry(events=tuple(events), stored_at=stored_at, generation=generation)
        self._entries.move_to_end(key)
        self._evict()
        return True

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= self.max_age_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        self.purge_expired()
        if self.max_entries is None:
            return
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("evicting least recently used cache entry %s", key)
