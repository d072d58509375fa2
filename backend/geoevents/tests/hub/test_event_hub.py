from __future__ import annotations

import asyncio

import pytest

from geoevents.domain.errors import CancellationSignal, RemoteFetchError
from geoevents.domain.query import FilterState, canonicalize
from geoevents.hub.event_hub import EventHub
from geoevents.sync.cache import ResultCache
from geoevents.sync.cancellation import CancellationToken


def _canonical(categories=("wildfires",)):
    return canonicalize(FilterState(start="2024-01-01", end="2024-12-31", categories=categories))


def test_empty_categories_skip_the_network(fake_eonet):
    server = fake_eonet()

    async def run():
        hub = server.hub()
        try:
            return await hub.load(_canonical(categories=())), hub.network_fetches
        finally:
            await hub.aclose()

    events, fetches = asyncio.run(run())
    assert events == ()
    assert fetches == 0
    assert server.calls == 0


def test_fresh_hit_is_served_from_cache(fake_eonet, make_page):
    server = fake_eonet([make_page(4)])

    async def run():
        hub = server.hub()
        try:
            first = await hub.load(_canonical())
            second = await hub.load(_canonical(categories=["wildfires", " wildfires"]))
            return first, second, hub.network_fetches
        finally:
            await hub.aclose()

    first, second, fetches = asyncio.run(run())
    assert len(first) == 4
    assert second == first
    assert fetches == 1


def test_stale_hit_returns_immediately_and_refreshes_once(fake_eonet, make_page, clock):
    server = fake_eonet([make_page(2)])
    cache = ResultCache(fresh_seconds=60, max_age_seconds=300, clock=clock)

    async def run():
        hub = server.hub(cache)
        try:
            await hub.load(_canonical())
            clock.advance(90)
            stale = await hub.load(_canonical())
            await hub.join_background()
            assert hub.network_fetches == 2
            return stale, cache.get(_canonical().key)
        finally:
            await hub.aclose()

    stale, refreshed = asyncio.run(run())
    assert len(stale) == 2
    assert refreshed.fresh is True
    assert server.calls == 2


def test_concurrent_forced_loads_share_one_request(fake_eonet, make_page):
    server = fake_eonet([make_page(100, next_page=2), make_page(40, offset=100)])

    async def run():
        hub = server.hub()
        try:
            results = await asyncio.gather(*(hub.load(_canonical(), force=True) for _ in range(5)))
            return results, hub.network_fetches
        finally:
            await hub.aclose()

    results, fetches = asyncio.run(run())
    assert fetches == 1
    assert server.calls == 2
    assert all(len(r) == 140 for r in results)


def test_flight_survives_while_one_waiter_remains(fake_eonet):
    server = fake_eonet(gated=True)

    async def run():
        hub = server.hub()
        leaving, staying = CancellationToken(), CancellationToken()
        try:
            first = asyncio.ensure_future(hub.fetch(_canonical(), token=leaving))
            second = asyncio.ensure_future(hub.fetch(_canonical(), token=staying))
            await server.wait_started()
            leaving.cancel("moved on")
            with pytest.raises(CancellationSignal):
                await first
            assert hub.is_inflight(_canonical().key)
            server.release()
            return await second
        finally:
            await hub.aclose()

    events = asyncio.run(run())
    assert len(events) == 1
    assert server.calls == 1


def test_last_waiter_leaving_aborts_the_flight(fake_eonet):
    server = fake_eonet(gated=True)

    async def run():
        hub = server.hub()
        token = CancellationToken()
        try:
            pending = asyncio.ensure_future(hub.fetch(_canonical(), token=token))
            await server.wait_started()
            token.cancel("moved on")
            with pytest.raises(CancellationSignal):
                await pending
            for _ in range(20):
                await asyncio.sleep(0)
            return hub.is_inflight(_canonical().key), _canonical().key in hub.cache
        finally:
            await hub.aclose()

    inflight, cached = asyncio.run(run())
    assert inflight is False
    assert cached is False


def test_foreground_errors_propagate_to_the_caller(fake_eonet):
    server = fake_eonet(status_code=503)

    async def run():
        hub = server.hub()
        try:
            await hub.load(_canonical())
        finally:
            await hub.aclose()

    with pytest.raises(RemoteFetchError):
        asyncio.run(run())


def test_background_failure_is_recorded_and_keeps_cache(fake_eonet, make_page, clock):
    server = fake_eonet([make_page(3)])
    cache = ResultCache(clock=clock)

    async def run():
        hub = server.hub(cache)
        try:
            await hub.load(_canonical())
            clock.advance(120)
            server.status_code = 500
            stale = await hub.load(_canonical())
            await hub.join_background()
            return stale, hub.errors, cache.get(_canonical().key)
        finally:
            await hub.aclose()

    stale, errors, entry = asyncio.run(run())
    assert len(stale) == 3
    assert len(errors) == 1
    assert isinstance(errors[0][1], RemoteFetchError)
    assert entry is not None
    assert len(entry.events) == 3


def test_recorded_background_errors_are_capped(fake_eonet, clock):
    server = fake_eonet()
    cache = ResultCache(clock=clock)
    categories = [("wildfires",), ("floods",), ("volcanoes",)]

    async def run():
        hub = EventHub(server.provider(), cache, max_errors=2)
        try:
            for cats in categories:
                await hub.load(_canonical(categories=cats))
            clock.advance(120)
            server.status_code = 500
            for cats in categories:
                await hub.load(_canonical(categories=cats))
            await hub.join_background()
            return list(hub.errors)
        finally:
            await hub.aclose()

    errors = asyncio.run(run())
    assert len(errors) == 2
    assert all(isinstance(exc, RemoteFetchError) for _, exc in errors)
    assert server.calls == 6
