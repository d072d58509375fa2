from __future__ import annotations

from datetime import date
from typing import Optional

from .query import FilterState

# EONET category identifiers
CATEGORY_LABELS = {
    "dustHaze": "Dust & Haze",
    "manmade": "Manmade",
    "seaLakeIce": "Sea & Lake Ice",
    "severeStorms": "Severe Storms",
    "snow": "Snow",
    "volcanoes": "Volcanoes",
    "waterColor": "Water Color",
    "floods": "Floods",
    "wildfires": "Wildfires",
}

DEFAULT_CATEGORIES = tuple(CATEGORY_LABELS.keys())
DEFAULT_RANGE_YEARS = 5


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return day.replace(year=day.year - years, day=28)


def default_filters(today: Optional[date] = None, *, years: int = DEFAULT_RANGE_YEARS) -> FilterState:
    """All categories over the last ``years`` years, viewport restriction off."""
    end = today or date.today()
    return FilterState(
        start=_years_before(end, years),
        end=end,
        categories=DEFAULT_CATEGORIES,
        viewport_only=False,
    )


def category_label(category_id: str) -> str:
    return CATEGORY_LABELS.get(category_id, category_id)
