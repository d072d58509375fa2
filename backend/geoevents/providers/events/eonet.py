from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import httpx

from geoevents.domain.errors import CancellationSignal, RemoteFetchError, TransportError
from geoevents.domain.geo import bbox_csv
from geoevents.domain.models import Event, EventCategory, EventGeometry, EventSource
from geoevents.domain.query import DEFAULT_STATUS, EventQuery
from geoevents.sync.cancellation import CancellationToken, run_cancellable

from .base import EventPage, EventsProvider, FetchOutcome

logger = logging.getLogger(__name__)


class EonetEventsProvider(EventsProvider):
    BASE_URL = "https://eonet.gsfc.nasa.gov/api/v3/events"
    MAX_PAGES = 3
    DEFAULT_LIMIT = 100

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = 20.0,
        max_pages: int = MAX_PAGES,
        default_limit: int = DEFAULT_LIMIT,
    ):
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self.max_pages = max_pages
        self.default_limit = default_limit
        self._owns_client = client is None
        self._client = client

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "EonetEventsProvider":
        return cls(
            client,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            max_pages=settings.max_pages,
            default_limit=settings.default_limit,
        )

    async def __aenter__(self) -> "EonetEventsProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers={"Accept": "application/json"})
        return self._client

    def build_url(self, query: EventQuery) -> str:
        params = {
            "status": query.status or DEFAULT_STATUS,
            "start": query.start.isoformat(),
            "end": query.end.isoformat(),
        }
        if query.categories:
            params["category"] = ",".join(query.categories)
        if query.bbox is not None:
            params["bbox"] = bbox_csv(query.bbox)
        params["limit"] = str(query.limit or self.default_limit)
        return str(httpx.URL(self.base_url, params=params))

    async def fetch_events(
        self,
        query: EventQuery,
        *,
        token: Optional[CancellationToken] = None,
    ) -> FetchOutcome:
        url: Optional[str] = self.build_url(query)
        collected: List[Event] = []
        pages = 0
        stats = {"fetched": 0, "mapped": 0, "skipped": 0}
        while url and pages < self.max_pages:
            try:
                page = await self.fetch_page(url, token=token)
            except CancellationSignal:
                logger.debug("fetch cancelled after %d page(s), keeping %d events", pages, len(collected))
                return FetchOutcome(events=tuple(collected), pages=pages, cancelled=True)
            collected.extend(page.events)
            for name in stats:
                stats[name] += page.stats.get(name, 0)
            pages += 1
            # server-supplied link is authoritative; it may carry cursor state
            url = page.next_url
            if url and pages < self.max_pages:
                logger.debug("following page %d: %s", pages + 1, url)
        logger.info(
            "fetched %d events across %d page(s) (skipped=%d)",
            len(collected),
            pages,
            stats["skipped"],
        )
        return FetchOutcome(events=tuple(collected), pages=pages)

    async def fetch_page(self, url: str, *, token: Optional[CancellationToken] = None) -> EventPage:
        if token is not None:
            token.raise_if_cancelled()
        try:
            resp = await run_cancellable(self._http().get(url), token)
        except httpx.TransportError as exc:
            raise TransportError(url, exc) from exc
        if not resp.is_success:
            raise RemoteFetchError(resp.status_code, url, resp.reason_phrase)
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteFetchError(resp.status_code, url, "invalid JSON payload") from exc
        return self._parse_page(data)

    def _parse_page(self, data) -> EventPage:
        if not isinstance(data, dict):
            return EventPage(events=(), stats={"fetched": 0, "mapped": 0, "skipped": 0})
        raw_events = data.get("events")
        if not isinstance(raw_events, list):
            raw_events = []
        events, stats = self._process_events(raw_events)
        return EventPage(events=tuple(events), next_url=self._next_link(data), stats=stats)

    @staticmethod
    def _next_link(data: dict) -> Optional[str]:
        # EONET uses ``link`` for the self URL (a string); accept either name holding ``next``
        for name in ("link", "links"):
            value = data.get(name)
            if isinstance(value, dict) and value.get("next"):
                return str(value["next"])
        return None

    def _process_events(self, events: list) -> Tuple[List[Event], dict]:
        mapped: List[Event] = []
        stats = {"fetched": len(events), "mapped": 0, "skipped": 0}
        for item in events:
            try:
                event = self._map_event(item)
            except (KeyError, TypeError, ValueError):
                event = None
            if event is None:
                stats["skipped"] += 1
                continue
            mapped.append(event)
        stats["mapped"] = len(mapped)
        return mapped, stats

    def _map_event(self, payload: dict) -> Optional[Event]:
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        categories = tuple(
            EventCategory(id=str(item.get("id")), title=item.get("title") or "")
            for item in payload.get("categories") or []
            if isinstance(item, dict)
        )
        sources = tuple(
            EventSource(id=str(item.get("id")), url=item.get("url"))
            for item in payload.get("sources") or []
            if isinstance(item, dict)
        )
        geometry = tuple(
            EventGeometry(
                date=self._parse_ts(item.get("date")),
                type=item.get("type") or "Point",
                coordinates=item.get("coordinates"),
                magnitude_value=self._to_float(item.get("magnitudeValue")),
                magnitude_unit=item.get("magnitudeUnit"),
            )
            for item in payload.get("geometry") or []
            if isinstance(item, dict)
        )
        return Event(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            description=payload.get("description"),
            link=payload.get("link"),
            closed=self._parse_ts(payload.get("closed")),
            categories=categories,
            geometry=geometry,
            sources=sources,
        )

    @staticmethod
    def _parse_ts(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        value = str(value)
        if value.endswith("Z"):
            value = value.replace("Z", "+00:00")
        if len(value) == 10:
            value += "T00:00:00+00:00"
        if len(value) == 19:
            value += "+00:00"
        dt = datetime.fromisoformat(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    @staticmethod
    def _to_float(value) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
