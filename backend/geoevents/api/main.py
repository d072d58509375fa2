from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geoevents.api.routers import events
from geoevents.config import build_hub
from geoevents.hub.event_hub import EventHub


def create_app(hub: Optional[EventHub] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.event_hub.aclose()

    app = FastAPI(title="Natural Events API", version="0.1.0", lifespan=lifespan)
    app.state.event_hub = hub if hub is not None else build_hub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[os.getenv("FRONTEND_ORIGIN", "http://localhost:8081")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(events.router, prefix="/api")
    return app


app = create_app()
