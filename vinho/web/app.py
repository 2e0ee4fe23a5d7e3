"""FastAPI application factory for Vinho."""

from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from vinho import __version__
from vinho.config import get_default_config
from vinho.db.engine import init_db

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Vinho",
        description="Wine label scanning, cataloging and visual recommendations",
        version=__version__,
    )

    # Initialize database tables
    init_db()

    # Serve stored label images when they are addressed by a local path
    storage = get_default_config().storage
    if storage.public_base_url.startswith("/"):
        image_dir = Path(storage.base_path).expanduser()
        image_dir.mkdir(parents=True, exist_ok=True)
        app.mount(storage.public_base_url, StaticFiles(directory=image_dir), name="images")

    # Include routers (import here to avoid circular imports)
    from vinho.web.routes import account, queue, scans, wines

    app.include_router(scans.router)
    app.include_router(queue.router)
    app.include_router(wines.router)
    app.include_router(account.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app


# Application instance
app = create_app()
