"""Listing Radar CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from listing_radar import __version__
from listing_radar.cli.auth import auth_app
from listing_radar.cli.ingest import ingest_app
from listing_radar.cli.listings import listings_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = typer.Typer(
    name="listing-radar",
    help="Listing Radar - turns rental alert emails into a deduplicated listing feed",
    add_completion=False,
)
app.add_typer(ingest_app, name="ingest")
app.add_typer(listings_app, name="listings")
app.add_typer(auth_app, name="auth")


@app.command()
def init_db(
    migrate: bool = typer.Option(False, "--migrate", help="Use Alembic migrations instead of create_all"),
) -> None:
    """Initialize the database (create tables)."""
    from listing_radar.db.engine import init_db as db_init
    from listing_radar.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Listing Radar version."""
    typer.echo(f"Listing Radar v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("Listing Radar Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    google_ok = all(
        os.environ.get(name)
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI")
    )
    typer.echo(f"  Google OAuth: {'configured' if google_ok else 'Not configured'}")
    typer.echo(f"  Backfill secret: {'set' if os.environ.get('BACKFILL_SECRET') else 'not set'}")
    typer.echo(f"  Redis: {os.environ.get('REDIS_URL') or 'not set (in-process rate limit)'}")

    from listing_radar.db.engine import get_database_url
    typer.echo(f"  Database: {get_database_url()}")


if __name__ == "__main__":
    app()
