"""
Auth CLI Commands
=================

Connect the Gmail mailbox that receives listing alerts.
"""

from __future__ import annotations

import asyncio

import typer
from rich import print as rprint

from listing_radar.core.exceptions import ConfigurationError, UpstreamError
from listing_radar.db.engine import get_session
from listing_radar.db.repositories import OAuthTokenRepository
from listing_radar.ingestion.credentials import GoogleOAuthClient, connect_account

auth_app = typer.Typer(help="Mailbox connection commands")


def _oauth_client() -> GoogleOAuthClient:
    try:
        return GoogleOAuthClient.from_env()
    except ConfigurationError as e:
        rprint(f"[red]Error:[/red] {e}")
        rprint("Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI in .env")
        raise typer.Exit(1)


@auth_app.command("url")
def auth_url() -> None:
    """Print the Google consent URL."""
    rprint("Open this URL, approve access, then run `listing-radar auth connect CODE`:\n")
    typer.echo(_oauth_client().build_auth_url())


@auth_app.command("connect")
def auth_connect(
    code: str = typer.Argument(..., help="Authorization code from the redirect"),
) -> None:
    """Exchange an authorization code and store the credential."""
    oauth = _oauth_client()
    try:
        with get_session() as session:
            credential = asyncio.run(connect_account(session, oauth, code))
    except UpstreamError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    rprint(f"[green]Connected[/green] {credential.email}")


@auth_app.command("status")
def auth_status() -> None:
    """Show the connected mailbox."""
    with get_session() as session:
        credential = OAuthTokenRepository(session).get_active()

    if credential is None:
        rprint("[yellow]No mailbox connected[/yellow]")
        raise typer.Exit(1)

    rprint(f"Mailbox: [bold]{credential.email}[/bold]")
    if credential.expiry_date is not None:
        state = "needs refresh" if credential.expires_within(60) else "valid"
        rprint(f"Access token: {state} (expires {credential.expiry_date.isoformat()})")
    else:
        rprint("Access token: none cached")
