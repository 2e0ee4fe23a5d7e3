"""Tasting history CLI commands."""

from pathlib import Path

import typer
from rich import print as rprint

from vinho.db.engine import get_session
from vinho.services.import_service import TastingImportService

tastings_app = typer.Typer(help="Tasting history commands")


@tastings_app.command("import")
def import_tastings(
    user_id: str = typer.Argument(..., help="Owner of the imported tastings"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV file with a header row"),
) -> None:
    """
    Import tastings from a CSV file.

    Recognized columns: producer, wine, year, rating, notes, tasted_at,
    region, country.
    """
    content = file.read_text(encoding="utf-8-sig")

    with get_session() as session:
        result = TastingImportService(session).import_csv(user_id, content)

    rprint(f"\n[green]Imported:[/green] {result.imported}")
    rprint(f"[yellow]Skipped (already recorded):[/yellow] {result.skipped}")
    if result.errors:
        rprint(f"\n[bold red]Errors ({len(result.errors)}):[/bold red]")
        for error in result.errors[:10]:
            rprint(f"  • {error}")
        if len(result.errors) > 10:
            rprint(f"  ... and {len(result.errors) - 10} more")
