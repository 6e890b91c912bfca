"""
Ingestion CLI Commands
======================

CLI commands for running mailbox ingestion and managing its jobs.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from redis.exceptions import RedisError
from rich import print as rprint
from rich.console import Console

from listing_radar.core.exceptions import (
    ConfigurationError,
    NotConnectedError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from listing_radar.core.schema import IngestResult
from listing_radar.ingestion.jobs import enqueue_ingestion, get_job_status, run_ingestion
from listing_radar.ingestion.pipeline import IngestRequest

console = Console()
ingest_app = typer.Typer(help="Ingestion pipeline commands")
jobs_app = typer.Typer(help="Job management commands")

ingest_app.add_typer(jobs_app, name="jobs")


@ingest_app.command("run")
def run_ingest(
    minutes: Optional[int] = typer.Option(None, "--minutes", "-m", help="Look-back window in minutes"),
    backfill: bool = typer.Option(False, "--backfill", help="Scan known alert senders over several pages"),
    days: Optional[int] = typer.Option(None, "--days", help="Backfill horizon in days"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", help="Backfill page ceiling"),
    secret: Optional[str] = typer.Option(
        None, "--secret", envvar="BACKFILL_SECRET", help="Backfill secret"
    ),
    identity: str = typer.Option("cli", "--identity", help="Caller identity for rate limiting"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Ingest listing alerts from the connected mailbox.

    Examples:
        listing-radar ingest run --minutes 60 --sync
        listing-radar ingest run --backfill --days 30 --max-pages 10 --sync
    """
    if backfill:
        rprint(f"\n[bold]Starting backfill[/bold] (days={days or 'default'}, max pages={max_pages or 'default'})")
    else:
        rprint(f"\n[bold]Starting ingestion[/bold] (minutes={minutes or 'default'})")

    if not sync:
        rprint("\n[dim]Enqueueing job for async processing...[/dim]")
        try:
            job_id = asyncio.run(enqueue_ingestion(minutes, backfill, secret, days, max_pages, identity))
        except (RedisError, OSError) as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running, or pass --sync")
            raise typer.Exit(1)
        rprint("\n[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")
        rprint("\nCheck status with:")
        rprint(f"  listing-radar ingest jobs status {job_id}")
        return

    request = IngestRequest(
        identity=identity,
        minutes=minutes,
        backfill=backfill,
        secret=secret,
        days=days,
        max_pages=max_pages,
    )
    rprint("\n[dim]Running synchronously...[/dim]\n")
    try:
        with console.status("[bold blue]Ingesting...[/bold blue]"):
            result = asyncio.run(run_ingestion(request))
    except RateLimitedError as e:
        rprint(f"[yellow]Rate limited:[/yellow] {e}")
        raise typer.Exit(2)
    except UnauthorizedError as e:
        rprint(f"[red]Unauthorized:[/red] {e}")
        raise typer.Exit(1)
    except NotConnectedError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except (ConfigurationError, UpstreamError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _display_ingest_result(result)


@ingest_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the ingestion worker.

    The worker processes queued jobs and runs the 15-minute cron ingestion.

    Examples:
        listing-radar ingest worker
        listing-radar ingest worker --burst
    """
    from arq import run_worker

    from listing_radar.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting ingestion worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")
    run_worker(WorkerSettings, burst=burst)


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of an ingestion job.

    Examples:
        listing-radar ingest jobs status abc123
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except (RedisError, OSError) as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")
    if result.get("enqueued_at"):
        rprint(f"  Enqueued: {result['enqueued_at']}")
    if isinstance(result.get("result"), dict):
        _display_job_result(result["result"])


def _display_ingest_result(result: IngestResult) -> None:
    """Display the counters of a synchronous run."""
    rprint("[bold]Results:[/bold]")
    rprint(f"  Mode: {result.mode.value}")
    if result.duration_seconds is not None:
        rprint(f"  Duration: {result.duration_seconds:.1f}s")
    rprint(f"  Scanned messages: {result.scanned_messages}")
    rprint(f"  New messages: {result.new_messages}")
    rprint(f"  Extracted URLs: {result.extracted_urls}")
    rprint(f"  New events: {result.new_events}")
    rprint(f"  New unique listings: {result.new_unique_listings}")

    if result.recent_listings:
        from listing_radar.cli.listings import render_listings

        render_listings(result.recent_listings, title="Recently Seen Listings")


def _display_job_result(result: dict) -> None:
    """Display job result in a formatted table."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Identity: {result.get('identity', 'N/A')}")
    rprint(f"  Mode: {result.get('mode', 'N/A')}")

    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Scanned messages: {result.get('scanned_messages', 0)}")
    rprint(f"  New messages: {result.get('new_messages', 0)}")
    rprint(f"  Extracted URLs: {result.get('extracted_urls', 0)}")
    rprint(f"  New events: {result.get('new_events', 0)}")
    rprint(f"  New unique listings: {result.get('new_unique_listings', 0)}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error}")
