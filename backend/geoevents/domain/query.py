from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional, Tuple, Union

from .errors import InvalidRangeError
from .geo import NO_VIEWPORT, ViewportKey, quantize_viewport, region_to_bbox, viewport_key
from .models import BBox, Viewport

STATUSES = ("open", "closed", "all")
DEFAULT_STATUS = "all"

DateLike = Union[date, str]


@dataclass(frozen=True)
class FilterState:
    """Raw, user-facing filter state as supplied by the settings collaborator."""

    start: DateLike
    end: DateLike
    categories: Tuple[str, ...] = field(default_factory=tuple)
    viewport_only: bool = False
    status: str = DEFAULT_STATUS
    limit: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.categories, str):
            object.__setattr__(self, "categories", (self.categories,))
        else:
            object.__setattr__(self, "categories", tuple(self.categories))
        if self.status not in STATUSES:
            raise ValueError(f"status must be one of {', '.join(STATUSES)}")
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be > 0")


@dataclass(frozen=True)
class EventQuery:
    start: date
    end: date
    categories: Tuple[str, ...]
    bbox: Optional[BBox] = None
    status: str = DEFAULT_STATUS
    limit: Optional[int] = None


@dataclass(frozen=True)
class CacheKey:
    start: str
    end: str
    categories: Tuple[str, ...]
    status: str
    limit: Optional[int]
    viewport: ViewportKey = NO_VIEWPORT

    def token(self) -> str:
        if isinstance(self.viewport, str):
            vp = self.viewport
        else:
            vp = ",".join(repr(v) for v in self.viewport)
        limit = "-" if self.limit is None else str(self.limit)
        return "|".join(["events", self.start, self.end, ",".join(self.categories), self.status, limit, vp])

    def __str__(self) -> str:
        return self.token()


@dataclass(frozen=True)
class CanonicalQuery:
    query: EventQuery
    key: CacheKey

    @property
    def is_empty(self) -> bool:
        """An empty category set yields zero events without a network call."""
        return not self.query.categories


def normalize_categories(categories: Iterable[str]) -> Tuple[str, ...]:
    cleaned = {str(c).strip() for c in categories if c is not None and str(c).strip()}
    return tuple(sorted(cleaned))


def _to_date(value: DateLike, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be YYYY-MM-DD, got {value!r}") from exc


def canonicalize(filters: FilterState, viewport: Optional[Viewport] = None) -> CanonicalQuery:
    """Build the canonical query and its cache key.

    Raises :class:`InvalidRangeError` when ``start`` is after ``end`` and
    ``ValueError`` for a malformed date.
    """
    start = _to_date(filters.start, "start")
    end = _to_date(filters.end, "end")
    if start > end:
        raise InvalidRangeError(start, end)

    categories = normalize_categories(filters.categories)
    bbox: Optional[BBox] = None
    vp_key: ViewportKey = NO_VIEWPORT
    if filters.viewport_only and viewport is not None:
        # bbox comes from the quantized region so the key fully determines the query
        bbox = region_to_bbox(quantize_viewport(viewport))
        vp_key = viewport_key(viewport)

    query = EventQuery(
        start=start,
        end=end,
        categories=categories,
        bbox=bbox,
        status=filters.status,
        limit=filters.limit,
    )
    key = CacheKey(
        start=start.isoformat(),
        end=end.isoformat(),
        categories=categories,
        status=filters.status,
        limit=filters.limit,
        viewport=vp_key,
    )
    return CanonicalQuery(query=query, key=key)
