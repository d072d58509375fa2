from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from geoevents.domain.models import Viewport
from geoevents.domain.query import FilterState
from geoevents.hub.event_hub import EventHub
from geoevents.providers.events.eonet import EonetEventsProvider
from geoevents.sync.cache import ResultCache
from geoevents.sync.controller import EventsController, FetchState

DEFAULT_BASE_URL = "https://eonet.gsfc.nasa.gov/api/v3/events"


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 20.0
    max_pages: int = 3
    default_limit: int = 100
    debounce_seconds: float = 0.4
    cache_fresh_seconds: float = 60.0
    cache_max_age_seconds: float = 300.0
    cache_max_entries: int = 256


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> Settings:
    fresh = _env_float("EVENTS_CACHE_FRESH_SECONDS", 60.0)
    max_age = _env_float("EVENTS_CACHE_MAX_AGE_SECONDS", 300.0)
    if max_age < fresh:
        max_age = fresh
    return Settings(
        base_url=os.getenv("EONET_BASE_URL", "").strip().rstrip("/") or DEFAULT_BASE_URL,
        timeout_seconds=_env_float("EONET_TIMEOUT_SECONDS", 20.0),
        max_pages=_env_int("EONET_MAX_PAGES", 3),
        default_limit=_env_int("EONET_DEFAULT_LIMIT", 100),
        debounce_seconds=_env_float("EVENTS_DEBOUNCE_MS", 400.0) / 1000.0,
        cache_fresh_seconds=fresh,
        cache_max_age_seconds=max_age,
        cache_max_entries=_env_int("EVENTS_CACHE_MAX_ENTRIES", 256),
    )


def build_hub(settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> EventHub:
    """Wire provider, cache and hub from ``settings``."""
    settings = settings or load_settings()
    provider = EonetEventsProvider.from_settings(settings, client=client)
    cache = ResultCache(
        fresh_seconds=settings.cache_fresh_seconds,
        max_age_seconds=settings.cache_max_age_seconds,
        max_entries=settings.cache_max_entries,
    )
    return EventHub(provider, cache)


def build_controller(
    hub: EventHub,
    filters: FilterState,
    settings: Optional[Settings] = None,
    *,
    viewport: Optional[Viewport] = None,
    on_change: Optional[Callable[[FetchState], None]] = None,
) -> EventsController:
    settings = settings or load_settings()
    return EventsController(
        hub,
        filters,
        viewport=viewport,
        debounce=settings.debounce_seconds,
        on_change=on_change,
    )
