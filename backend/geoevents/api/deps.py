from __future__ import annotations

from fastapi import HTTPException, Request

from geoevents.hub.event_hub import EventHub


def get_hub(request: Request) -> EventHub:
    hub = getattr(request.app.state, "event_hub", None)
    if hub is None:
        raise HTTPException(status_code=500, detail="Event hub not configured")
    return hub
