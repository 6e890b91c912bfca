"""
Listings CLI Commands
=====================

Read-only views over stored listings and ingestion activity.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from listing_radar.core.enums import ListingSource
from listing_radar.core.schema import Listing
from listing_radar.db.engine import get_session
from listing_radar.db.repositories import ListingEventRepository, ListingRepository

console = Console()
listings_app = typer.Typer(help="Listing queries")


def render_listings(listings: list[Listing], title: str = "Listings") -> None:
    """Print listings as a rich table, newest first."""
    table = Table(title=title)
    table.add_column("Last Seen", style="dim")
    table.add_column("Source")
    table.add_column("Price", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("URL", overflow="fold")

    for listing in listings:
        price = f"${listing.price:,.0f}" if listing.price is not None else "-"
        table.add_row(
            listing.latest_seen_at.strftime("%Y-%m-%d %H:%M"),
            listing.source.value,
            price,
            listing.title or "",
            listing.url,
        )

    console.print(table)


@listings_app.command("recent")
def recent(
    minutes: int = typer.Option(60, "--minutes", "-m", help="Look-back window in minutes"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Filter by source"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Substring of title or URL"),
    limit: int = typer.Option(200, "--limit", help="Maximum rows"),
) -> None:
    """
    Show listings seen within the last N minutes.

    Examples:
        listing-radar listings recent --minutes 1440 --source craigslist
    """
    if source and source != "all" and source not in {s.value for s in ListingSource}:
        rprint(f"[red]Error:[/red] Unknown source '{source}'")
        raise typer.Exit(1)

    since = datetime.now(UTC) - timedelta(minutes=minutes)
    with get_session() as session:
        listings = ListingRepository(session).list_recent(since, source=source, query=query, limit=limit)

    if not listings:
        rprint(f"[yellow]No listings seen in the last {minutes} minutes[/yellow]")
        return

    render_listings(listings, title=f"Listings seen in the last {minutes} minutes")


@listings_app.command("last-ingest")
def last_ingest() -> None:
    """Show when the newest ingested email was received."""
    with get_session() as session:
        received_at = ListingEventRepository(session).last_received_at()
        total = ListingRepository(session).count()

    if received_at is None:
        rprint("[yellow]Nothing ingested yet[/yellow]")
        return

    rprint(f"Last ingested email: [bold]{received_at.isoformat()}[/bold]")
    rprint(f"Listings stored: {total}")
