from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

from geoevents.domain.models import Event
from geoevents.domain.query import EventQuery
from geoevents.sync.cancellation import CancellationToken


@dataclass(frozen=True)
class EventPage:
    events: Tuple[Event, ...]
    next_url: Optional[str] = None
    stats: dict = field(default_factory=dict)


@dataclass(frozen=True)
class FetchOutcome:
    """Events merged across pages, in page-then-index order."""

    events: Tuple[Event, ...]
    pages: int
    cancelled: bool = False


class EventsProvider(Protocol):
    """Contract for paginated natural-event providers."""

    def build_url(self, query: EventQuery) -> str:
        raise NotImplementedError

    async def fetch_events(
        self,
        query: EventQuery,
        *,
        token: Optional[CancellationToken] = None,
    ) -> FetchOutcome:
        """Fetch every page for ``query`` up to the provider's page ceiling.

        A cancelled ``token`` stops the sequence and returns the partial
        result with ``cancelled=True``; HTTP and transport failures raise.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        raise NotImplementedError
