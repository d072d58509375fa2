from __future__ import annotations

from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from geoevents.api.deps import get_hub
from geoevents.domain.categories import CATEGORY_LABELS, DEFAULT_CATEGORIES
from geoevents.domain.errors import RemoteFetchError, TransportError
from geoevents.domain.models import Viewport
from geoevents.domain.query import FilterState, canonicalize
from geoevents.hub.event_hub import EventHub

router = APIRouter(tags=["events"])


@router.get("/events")
async def list_events(
    start: date_type,
    end: date_type,
    categories: Optional[str] = Query(None, description="Comma-separated category ids; defaults to all"),
    status: str = Query("all", pattern="^(open|closed|all)$"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    viewport_only: bool = Query(False),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    lat_delta: Optional[float] = Query(None, gt=0),
    lon_delta: Optional[float] = Query(None, gt=0),
    refresh: bool = Query(False, description="Bypass cache freshness"),
    hub: EventHub = Depends(get_hub),
):
    if categories is None:
        selected = DEFAULT_CATEGORIES
    else:
        selected = tuple(c for c in categories.split(",") if c.strip())
    viewport = None
    if None not in (lat, lon, lat_delta, lon_delta):
        viewport = Viewport(latitude=lat, longitude=lon, latitude_delta=lat_delta, longitude_delta=lon_delta)
    elif viewport_only:
        raise HTTPException(status_code=422, detail="viewport_only requires lat, lon, lat_delta and lon_delta")

    try:
        filters = FilterState(
            start=start,
            end=end,
            categories=selected,
            viewport_only=viewport_only,
            status=status,
            limit=limit,
        )
        canonical = canonicalize(filters, viewport)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        events = await hub.load(canonical, force=refresh)
    except RemoteFetchError as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": "events provider error", "upstreamStatus": exc.status_code},
        ) from exc
    except TransportError as exc:
        raise HTTPException(status_code=504, detail="events provider unreachable") from exc

    return {
        "events": [event.to_dict() for event in events],
        "count": len(events),
        "cacheKey": canonical.key.token(),
        "bbox": list(canonical.query.bbox) if canonical.query.bbox else None,
    }


@router.get("/categories")
def list_categories():
    return [{"id": category_id, "label": CATEGORY_LABELS[category_id]} for category_id in DEFAULT_CATEGORIES]
