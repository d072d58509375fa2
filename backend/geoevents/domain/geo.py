from __future__ import annotations

from typing import Optional, Tuple, Union

from .models import BBox, Viewport

# Four decimals ~= 11 m at the equator; absorbs sub-pixel jitter from map gestures
VIEWPORT_PRECISION = 4
NO_VIEWPORT = "none"

ViewportKey = Union[str, Tuple[float, float, float, float]]


def region_to_bbox(viewport: Viewport) -> BBox:
    """Convert a viewport into ``(west, south, east, north)``.

    No clamping to [-180, 180] / [-90, 90] is done; anti-meridian wraparound
    is the caller's concern.
    """
    half_lon = viewport.longitude_delta / 2
    half_lat = viewport.latitude_delta / 2
    west = viewport.longitude - half_lon
    east = viewport.longitude + half_lon
    south = viewport.latitude - half_lat
    north = viewport.latitude + half_lat
    return (west, south, east, north)


def _round(value: float, precision: int) -> float:
    rounded = round(float(value), precision)
    # -0.0 and 0.0 must collapse to one key
    return rounded + 0.0


def quantize_viewport(viewport: Viewport, precision: int = VIEWPORT_PRECISION) -> Viewport:
    return Viewport(
        latitude=_round(viewport.latitude, precision),
        longitude=_round(viewport.longitude, precision),
        latitude_delta=_round(viewport.latitude_delta, precision),
        longitude_delta=_round(viewport.longitude_delta, precision),
    )


def viewport_key(viewport: Optional[Viewport], precision: int = VIEWPORT_PRECISION) -> ViewportKey:
    if viewport is None:
        return NO_VIEWPORT
    q = quantize_viewport(viewport, precision)
    return (q.latitude, q.longitude, q.latitude_delta, q.longitude_delta)


def bbox_csv(bbox: BBox) -> str:
    return ",".join(_format_coord(coord) for coord in bbox)


def _format_coord(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))
