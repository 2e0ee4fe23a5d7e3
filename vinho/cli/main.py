"""Vinho CLI using Typer."""

import json
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

from vinho import __version__  # noqa: E402
from vinho.cli.queue import queue_app  # noqa: E402
from vinho.cli.tastings import tastings_app  # noqa: E402

app = typer.Typer(
    name="vinho",
    help="Vinho - wine label scanning, cataloging and visual recommendations",
    add_completion=False,
)
app.add_typer(queue_app, name="queue")
app.add_typer(tastings_app, name="tastings")


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    from vinho.config import get_default_config

    extraction = get_default_config().extraction
    if extraction.api_key:
        typer.echo(f"  AI Provider: {extraction.provider} (configured, model {extraction.model})")
    else:
        typer.echo(f"  AI Provider: {extraction.provider} (no API key, extraction jobs will fail)")
        typer.echo("  Tip: Set OPENAI_API_KEY or ANTHROPIC_API_KEY in .env")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the Vinho API server."""
    import uvicorn

    typer.echo(f"Starting Vinho on http://{host}:{port}")
    _check_ai_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "vinho.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from vinho.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def migrate() -> None:
    """Apply Alembic migrations up to head."""
    from vinho.db.engine import run_migrations

    typer.echo("Running migrations...")
    run_migrations()
    typer.echo("Database is up to date.")


@app.command()
def version() -> None:
    """Show the Vinho version."""
    typer.echo(f"Vinho v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from vinho.config import get_default_config
    from vinho.db.engine import get_database_url

    typer.echo("Vinho Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    config = get_default_config()
    typer.echo(f"  Config file: {config.config_path or 'built-in defaults'}")
    _check_ai_config()
    typer.echo(f"  Database: {get_database_url()}")
    typer.echo(f"  Vector index: {config.vector_index.url} ({config.vector_index.index_name})")
    typer.echo(f"  Redis: {os.environ.get('REDIS_HOST', 'localhost')}:{os.environ.get('REDIS_PORT', '6379')}")
    typer.echo(f"  JWT secret: {'set' if os.environ.get('VINHO_JWT_SECRET') else 'not set'}")
    typer.echo(f"  Service key: {'set' if os.environ.get('VINHO_SERVICE_KEY') else 'not set'}")


@app.command()
def token(
    user_id: str = typer.Argument(..., help="User id to issue the token for"),
    minutes: int = typer.Option(60 * 24 * 7, "--minutes", "-m", help="Token lifetime"),
) -> None:
    """Issue an access token for a user (development helper)."""
    from vinho.core.errors import AuthenticationError
    from vinho.web.auth import create_access_token

    try:
        typer.echo(create_access_token(user_id, expires_minutes=minutes))
    except AuthenticationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def similar(
    user_id: str = typer.Argument(..., help="User to recommend for"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum results (1-20)"),
    threshold: float = typer.Option(0.6, "--threshold", "-t", help="Minimum similarity (0-1)"),
) -> None:
    """Print visually similar wines for a user as JSON."""
    from vinho.core.errors import SimilarityServiceError
    from vinho.db.engine import get_session
    from vinho.services.similarity_service import SimilarityService
    from vinho.services.vector_index import get_vector_index

    try:
        with get_session() as session:
            response = SimilarityService(session, get_vector_index()).similar_for_user(
                user_id, limit=limit, threshold=threshold
            )
    except SimilarityServiceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(json.dumps(response.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    app()
