from __future__ import annotations

import asyncio
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from geoevents.api.main import create_app
from geoevents.hub.event_hub import EventHub
from geoevents.providers.events.eonet import EonetEventsProvider
from geoevents.sync.cache import ResultCache

BASE_URL = "https://eonet.test/api/v3/events"


def _event(idx: int, category: str = "wildfires") -> dict:
    return {
        "id": f"EONET_{idx}",
        "title": f"Event {idx}",
        "description": None,
        "link": f"{BASE_URL}/EONET_{idx}",
        "closed": None,
        "categories": [{"id": category, "title": category.title()}],
        "sources": [{"id": "InciWeb", "url": f"https://inciweb.test/{idx}"}],
        "geometry": [
            {
                "date": "2024-06-01T00:00:00Z",
                "type": "Point",
                "coordinates": [-120.0 + idx * 0.01, 37.0],
                "magnitudeValue": 1200.0,
                "magnitudeUnit": "acres",
            }
        ],
    }


def _page(count: int, *, offset: int = 0, next_page: Optional[int] = None, category: str = "wildfires") -> dict:
    body = {
        "title": "EONET Events",
        "description": "Natural events from EONET.",
        "link": BASE_URL,
        "events": [_event(offset + i, category) for i in range(count)],
    }
    if next_page is not None:
        body["links"] = {"next": f"{BASE_URL}?page={next_page}&cursor=abc{next_page}"}
    return body


class FakeEonet:
    """Scripted EONET endpoint served through ``httpx.MockTransport``.

    ``pages`` are response bodies indexed by the ``page`` query parameter
    (absent = page 1). With ``always_next`` every page links to the next.
    When ``gate`` is set the handler blocks until the test releases it.
    """

    def __init__(
        self,
        pages: Optional[list] = None,
        *,
        status_code: int = 200,
        always_next: bool = False,
        gated: bool = False,
        error: Optional[Exception] = None,
    ) -> None:
        self.pages = pages if pages is not None else [_page(1)]
        self.status_code = status_code
        self.always_next = always_next
        self.gated = gated
        self.error = error
        self.requests: list[httpx.Request] = []
        self._gate: Optional[asyncio.Event] = None
        self._started: Optional[asyncio.Event] = None

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def first_page_requests(self) -> list:
        return [r for r in self.requests if "page" not in r.url.params]

    def release(self) -> None:
        self._events()[0].set()

    async def wait_started(self) -> None:
        await self._events()[1].wait()

    def _events(self):
        if self._gate is None:
            self._gate = asyncio.Event()
            self._started = asyncio.Event()
        return self._gate, self._started

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gated:
            gate, started = self._events()
            started.set()
            await gate.wait()
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "boom"})
        page_no = int(request.url.params.get("page", "1"))
        if self.always_next:
            return httpx.Response(200, json=_page(1, offset=page_no, next_page=page_no + 1))
        body = self.pages[min(page_no, len(self.pages)) - 1]
        return httpx.Response(200, json=body)

    def provider(self, **kwargs) -> EonetEventsProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return EonetEventsProvider(client, base_url=BASE_URL, **kwargs)

    def hub(self, cache: Optional[ResultCache] = None) -> EventHub:
        return EventHub(self.provider(), cache)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def make_page():
    return _page


@pytest.fixture()
def make_event():
    return _event


@pytest.fixture()
def fake_eonet():
    return FakeEonet


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def eonet_server() -> FakeEonet:
    return FakeEonet([_page(2, next_page=2), _page(1, offset=2)])


@pytest.fixture()
def api_client(eonet_server):
    app = create_app(hub=eonet_server.hub())
    with TestClient(app) as client:
        yield client
