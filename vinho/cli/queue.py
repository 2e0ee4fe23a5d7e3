"""
Queue CLI Commands
==================

CLI commands for processing and inspecting the label-scan queue.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from vinho.db.engine import get_session
from vinho.db.repositories import CatalogRepository, QueueJobRepository
from vinho.pipeline.jobs import enqueue_processing, run_queue_batch

console = Console()
queue_app = typer.Typer(help="Label-scan queue commands")

_STATUS_COLORS = {
    "completed": "green",
    "processing": "blue",
    "pending": "yellow",
    "failed": "red",
}


@queue_app.command("process")
def process_queue(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Jobs to claim (max 20)"),
    sync: bool = typer.Option(False, "--sync", help="Run in this process instead of enqueueing"),
) -> None:
    """
    Process a batch of pending label scans.

    Examples:
        vinho queue process --sync --limit=10
        vinho queue process
    """
    if sync:
        rprint("\n[dim]Processing synchronously...[/dim]\n")
        with console.status("[bold blue]Extracting labels...[/bold blue]"):
            result = asyncio.run(run_queue_batch(limit))

        table = Table(title="Processed Jobs")
        table.add_column("Job", style="bold")
        table.add_column("Status")
        table.add_column("Model")
        table.add_column("Vintage")
        table.add_column("Error")
        for outcome in result.outcomes:
            color = _STATUS_COLORS.get(outcome.status.value, "white")
            table.add_row(
                outcome.job_id,
                f"[{color}]{outcome.status.value}[/{color}]",
                outcome.model or "-",
                outcome.vintage_id or "-",
                (outcome.error or "")[:60],
            )
        console.print(table)
        rprint(
            f"\n[bold]Completed:[/bold] {result.processed}  "
            f"[bold]Failed:[/bold] {result.failed}  [bold]Total:[/bold] {result.total}"
        )
        return

    rprint("\n[dim]Enqueueing queue processing run...[/dim]")
    try:
        arq_job_id = asyncio.run(enqueue_processing(limit))
    except Exception as e:
        rprint(f"\n[red]Error:[/red] Failed to enqueue run: {e}")
        rprint("\nMake sure Redis is running, or use --sync")
        raise typer.Exit(1)
    rprint("\n[green]Run enqueued successfully![/green]")
    rprint(f"arq job ID: [bold]{arq_job_id}[/bold]")


@queue_app.command("status")
def job_status(job_id: str = typer.Argument(..., help="Queue job ID")) -> None:
    """Show the state of one queue job."""
    with get_session() as session:
        job = QueueJobRepository(session).get_by_id(job_id)

    if job is None:
        rprint(f"[red]Error:[/red] Job '{job_id}' not found")
        raise typer.Exit(1)

    color = _STATUS_COLORS.get(job.status.value, "white")
    rprint(f"\n[bold]Job {job.id}[/bold]")
    rprint(f"  Status: [{color}]{job.status.value}[/{color}]")
    rprint(f"  User: {job.user_id}")
    rprint(f"  Scan: {job.scan_id or 'N/A'}")
    rprint(f"  Retries: {job.retry_count}")
    rprint(f"  Created: {job.created_at.isoformat()}")
    if job.processed_at:
        rprint(f"  Processed: {job.processed_at.isoformat()}")
    if job.error_message:
        rprint(f"  Error: [red]{job.error_message}[/red]")
    if job.processed_data:
        rprint(f"  Wine: {job.processed_data.get('producer')} {job.processed_data.get('wine_name')}")


@queue_app.command("stats")
def queue_stats() -> None:
    """Show job counts by status and catalog size."""
    with get_session() as session:
        counts = QueueJobRepository(session).count_by_status()
        catalog = CatalogRepository(session).count_entities()

    table = Table(title="Queue Jobs")
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")
    for status, count in sorted(counts.items()):
        color = _STATUS_COLORS.get(status, "white")
        table.add_row(f"[{color}]{status}[/{color}]", str(count))
    console.print(table)

    catalog_table = Table(title="Catalog")
    catalog_table.add_column("Entity", style="bold")
    catalog_table.add_column("Count", justify="right")
    for label, count in catalog.items():
        catalog_table.add_row(label, str(count))
    console.print(catalog_table)


@queue_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the queue worker.

    The worker runs triggered processing runs and a once-a-minute sweep
    that also picks up jobs waiting for a retry.
    """
    from arq import run_worker

    from vinho.pipeline.jobs import WorkerSettings

    rprint("[bold]Starting queue worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)
