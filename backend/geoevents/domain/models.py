from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Tuple

# [west, south, east, north]
BBox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Viewport:
    """Map region; deltas are the full angular span, not the half-span."""

    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float


@dataclass(frozen=True)
class EventCategory:
    id: str
    title: str


@dataclass(frozen=True)
class EventSource:
    id: str
    url: Optional[str] = None


@dataclass(frozen=True)
class EventGeometry:
    date: Optional[datetime]
    type: str
    coordinates: Any
    magnitude_value: Optional[float] = None
    magnitude_unit: Optional[str] = None


@dataclass(frozen=True)
class Event:
    id: str
    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    closed: Optional[datetime] = None
    categories: Tuple[EventCategory, ...] = field(default_factory=tuple)
    geometry: Tuple[EventGeometry, ...] = field(default_factory=tuple)
    sources: Tuple[EventSource, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.id:
            raise ValueError("event id is required")

    @property
    def is_open(self) -> bool:
        return self.closed is None

    @property
    def first_point(self) -> Optional[Tuple[float, float]]:
        """(lat, lon) of the first Point geometry, if any."""
        if not self.geometry:
            return None
        first = self.geometry[0]
        if first.type != "Point":
            return None
        try:
            lon, lat = first.coordinates[0], first.coordinates[1]
            return float(lat), float(lon)
        except (TypeError, ValueError, IndexError):
            return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "closed": self.closed.isoformat() if self.closed else None,
            "categories": [{"id": c.id, "title": c.title} for c in self.categories],
            "sources": [{"id": s.id, "url": s.url} for s in self.sources],
            "geometry": [
                {
                    "date": g.date.isoformat() if g.date else None,
                    "type": g.type,
                    "coordinates": g.coordinates,
                    "magnitudeValue": g.magnitude_value,
                    "magnitudeUnit": g.magnitude_unit,
                }
                for g in self.geometry
            ],
        }
