import asyncio
import json
import logging
from typing import Optional

import typer

from geoevents.config import build_hub, load_settings
from geoevents.domain.categories import CATEGORY_LABELS, DEFAULT_CATEGORIES, default_filters
from geoevents.domain.errors import EventSyncError
from geoevents.domain.models import Viewport
from geoevents.domain.query import FilterState, canonicalize
from geoevents.hub.event_hub import EventHub

app = typer.Typer(help="Fetch natural events from the EONET catalog")


def _build_hub() -> EventHub:
    return build_hub(load_settings())


def _filters(
    start: Optional[str],
    end: Optional[str],
    categories: Optional[str],
    status: str,
    limit: Optional[int],
    viewport_only: bool,
) -> FilterState:
    defaults = default_filters()
    cats = [c.strip() for c in categories.split(",")] if categories is not None else DEFAULT_CATEGORIES
    return FilterState(
        start=start or defaults.start,
        end=end or defaults.end,
        categories=cats,
        viewport_only=viewport_only,
        status=status,
        limit=limit,
    )


def _viewport(bbox: Optional[str]) -> Optional[Viewport]:
    if not bbox:
        return None
    try:
        west, south, east, north = (float(part) for part in bbox.split(","))
    except ValueError as exc:
        raise typer.BadParameter("bbox must be west,south,east,north") from exc
    return Viewport(
        latitude=(south + north) / 2,
        longitude=(west + east) / 2,
        latitude_delta=north - south,
        longitude_delta=east - west,
    )


async def _load(hub: EventHub, filters: FilterState, viewport: Optional[Viewport]):
    try:
        return await hub.load(canonicalize(filters, viewport))
    finally:
        await hub.aclose()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log fetch progress")):
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command("events")
def cli_events(
    start: Optional[str] = typer.Option(None, help="Start date YYYY-MM-DD (default: 5 years ago)"),
    end: Optional[str] = typer.Option(None, help="End date YYYY-MM-DD (default: today)"),
    categories: Optional[str] = typer.Option(None, help="Comma-separated category ids"),
    bbox: Optional[str] = typer.Option(None, help="Restrict to west,south,east,north"),
    status: str = typer.Option("all", help="open | closed | all"),
    limit: Optional[int] = typer.Option(None, help="Page size"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    try:
        filters = _filters(start, end, categories, status, limit, viewport_only=bbox is not None)
        events = asyncio.run(_load(_build_hub(), filters, _viewport(bbox)))
    except EventSyncError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    if as_json:
        typer.echo(json.dumps([event.to_dict() for event in events], indent=2))
        return
    if not events:
        typer.echo("No events for those filters")
        raise typer.Exit(code=0)
    typer.echo("id\tcategory\tlat\tlon\ttitle")
    for event in events:
        point = event.first_point
        lat, lon = (f"{point[0]:.4f}", f"{point[1]:.4f}") if point else ("-", "-")
        category = event.categories[0].id if event.categories else "-"
        typer.echo(f"{event.id}\t{category}\t{lat}\t{lon}\t{event.title}")


@app.command("url")
def cli_url(
    start: Optional[str] = typer.Option(None, help="Start date YYYY-MM-DD"),
    end: Optional[str] = typer.Option(None, help="End date YYYY-MM-DD"),
    categories: Optional[str] = typer.Option(None, help="Comma-separated category ids"),
    bbox: Optional[str] = typer.Option(None, help="west,south,east,north"),
    status: str = typer.Option("all", help="open | closed | all"),
    limit: Optional[int] = typer.Option(None, help="Page size"),
):
    """Print the first-page request URL and cache key for the given filters."""
    try:
        filters = _filters(start, end, categories, status, limit, viewport_only=bbox is not None)
        canonical = canonicalize(filters, _viewport(bbox))
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    hub = _build_hub()
    typer.echo(hub.provider.build_url(canonical.query))
    typer.echo(f"key: {canonical.key.token()}")


@app.command("categories")
def cli_categories():
    for category_id in DEFAULT_CATEGORIES:
        typer.echo(f"{category_id}\t{CATEGORY_LABELS[category_id]}")


if __name__ == "__main__":
    app()
