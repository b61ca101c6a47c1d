"""jobsync CLI.

Commands:
- init-db: Create the reporting schema
- declare-topology: Declare the sync exchange, queues and bindings
- consume: Run the sync consumer until interrupted
- backfill: Reconcile the reporting schema against the source store
- backfill-status: Show recent reconciliation runs
- publish: Publish a change event by hand
- schedule-backfill: Enqueue a backfill on the arq worker
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Coroutine
from typing import Any, Optional

import typer
from redis.exceptions import ConnectionError as RedisConnectionError
from rich.console import Console
from rich.table import Table
from sqlalchemy import select

from jobsync.backfill import BackfillJob, BackfillOptions, BackfillStats
from jobsync.config import AppConfig, get_config
from jobsync.consumer import Consumer, Dispatcher
from jobsync.core.errors import TransientInfraFailure
from jobsync.core.logging import configure_logging
from jobsync.core.queue import get_queue
from jobsync.core.startup import StartupError, check_connectivity, open_sync_resources
from jobsync.db.connection import Database
from jobsync.db.models import SyncRunLogModel
from jobsync.messaging.broker import BrokerClient, SyncPublisher
from jobsync.messaging.topology import ENTITIES
from jobsync.sync.types import RunStatus, SyncAction

app = typer.Typer(
    name="jobsync",
    help="jobsync - mirror the job-tracking document store into the reporting schema",
    no_args_is_help=True,
)

console = Console()


def _load_config() -> AppConfig:
    try:
        config = get_config()
    except KeyError as e:
        console.print(f"[red]Configuration error: {e.args[0]}[/red]")
        raise typer.Exit(2)
    configure_logging(config.log_level, config.json_logs)
    return config


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a command body; connectivity failures exit non-zero."""
    try:
        return asyncio.run(coro)
    except (StartupError, TransientInfraFailure) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="init-db")
def init_db(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Create reporting tables from the model metadata."""
    config = _load_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        database = Database(config.db).open()
        try:
            await check_connectivity("Reporting database", database.ping, config.backfill.connect_attempts)
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
            await database.create_schema(drop=drop)
        finally:
            await database.close()

    _run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="declare-topology")
def declare_topology():
    """Declare the sync exchange, queues and bindings (idempotent)."""
    config = _load_config()

    async def _declare() -> list[str]:
        broker = BrokerClient(config.broker)
        await check_connectivity("Broker", broker.open, config.backfill.connect_attempts)
        try:
            return await broker.declare_topology()
        finally:
            await broker.close()

    queues = _run(_declare())
    console.print(f"[bold green]✓[/bold green] Exchange {config.broker.exchange}: {len(queues)} queues")
    for name in queues:
        console.print(f"  {name}", style="dim")


@app.command()
def consume():
    """Drain the sync queues until SIGINT/SIGTERM."""
    config = _load_config()
    console.print(f"[bold]Starting consumer[/bold] (prefetch={config.broker.prefetch})")

    async def _consume():
        async with open_sync_resources(config) as resources:
            broker = BrokerClient(config.broker)
            await check_connectivity("Broker", broker.open, config.backfill.connect_attempts)
            consumer = Consumer(
                broker,
                Dispatcher(resources.database, resources.store),
                prefetch=config.broker.prefetch,
            )
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop.set)
            try:
                await consumer.run(stop)
            finally:
                await broker.close()

    _run(_consume())
    console.print("[bold green]✓[/bold green] Consumer stopped")


def _print_stats(stats: BackfillStats) -> None:
    style = {
        RunStatus.SUCCESS: "green",
        RunStatus.PARTIAL_SUCCESS: "yellow",
        RunStatus.FAILED: "red",
        RunStatus.SKIPPED: "cyan",
    }[stats.status]
    console.print(f"\nStatus: [{style}]{stats.status.value}[/{style}] in {stats.duration_seconds}s")

    table = Table(title="Backfill Summary")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Reports seen", str(stats.reports_seen))
    table.add_row("Reports synced", str(stats.reports_synced))
    table.add_row("Reports archived at source", str(stats.reports_archived))
    table.add_row("Reports skipped", str(stats.reports_skipped))
    table.add_row("Jobsites seen", str(stats.jobsites_seen))
    table.add_row("Jobsites synced", str(stats.jobsites_synced))
    table.add_row("Deleted at source, archived", str(stats.archived))
    for name, count in sorted(stats.facts.items()):
        table.add_row(name, str(count))
    table.add_row("Errors", f"[red]{stats.errors}[/red]" if stats.errors else "0")
    console.print(table)


@app.command()
def backfill(
    jobsite: Optional[str] = typer.Option(None, "--jobsite", help="Only this jobsite id"),
    year: Optional[int] = typer.Option(None, "--year", help="Only reports dated in this year"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum reports to sync"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count only; write nothing but the run log"),
    invoices: bool = typer.Option(True, "--invoices/--no-invoices", help="Also walk jobsite invoices"),
):
    """Sync the source store into the reporting schema.

    Exits 0 when the run completes, even with per-report errors (they are
    reported as counters). Exits 1 only when a store is unreachable.
    """
    config = _load_config()
    options = BackfillOptions(
        jobsite_id=jobsite, year=year, limit=limit, dry_run=dry_run, include_invoices=invoices
    )
    console.print(f"[bold]Starting backfill[/bold] {options.as_filters()}")
    if dry_run:
        console.print("[yellow]DRY RUN MODE - No changes will be made[/yellow]")

    async def _backfill() -> BackfillStats:
        async with open_sync_resources(config) as resources:
            job = BackfillJob(
                resources.database,
                resources.store,
                options,
                progress_every=config.backfill.progress_every,
            )
            return await job.run()

    _print_stats(_run(_backfill()))


@app.command(name="backfill-status")
def backfill_status(
    last_n: int = typer.Option(5, "--last", "-n", help="Show last N runs"),
):
    """Show recent reconciliation runs from sync_run_log."""
    config = _load_config()

    async def _status() -> list[SyncRunLogModel]:
        database = Database(config.db).open()
        try:
            async with database.session() as session:
                result = await session.execute(
                    select(SyncRunLogModel)
                    .order_by(SyncRunLogModel.run_timestamp.desc())
                    .limit(last_n)
                )
                return list(result.scalars().all())
        finally:
            await database.close()

    runs = _run(_status())
    if not runs:
        console.print("[yellow]No backfill runs found[/yellow]")
        return

    table = Table(title=f"Last {len(runs)} Backfill Runs")
    table.add_column("Started", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Reports", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Duration", justify="right")
    for run in runs:
        table.add_row(
            run.run_timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"),
            run.status + (" (dry run)" if run.dry_run else ""),
            str((run.counters or {}).get("reports_seen", 0)),
            str(run.errors),
            f"{run.duration_seconds or 0:.1f}s",
        )
    console.print(table)


@app.command()
def publish(
    entity: str = typer.Argument(..., help=f"One of: {', '.join(ENTITIES)}"),
    action: SyncAction = typer.Argument(..., help="created, updated or deleted"),
    natural_id: str = typer.Argument(..., help="Source document id"),
):
    """Publish one change event, e.g. to replay a lost update."""
    if entity not in ENTITIES:
        raise typer.BadParameter(f"Unknown entity '{entity}'", param_hint="ENTITY")
    config = _load_config()

    async def _publish() -> bool:
        broker = BrokerClient(config.broker)
        await check_connectivity("Broker", broker.open, config.backfill.connect_attempts)
        publisher = SyncPublisher(broker)
        try:
            return await publisher.publish_change(entity, action, natural_id)
        finally:
            await publisher.close()
            await broker.close()

    if not _run(_publish()):
        console.print(f"[red]✗ Failed to publish {entity}.{action.value}[/red]")
        raise typer.Exit(1)
    console.print(f"[bold green]✓[/bold green] Published {entity}.{action.value} {natural_id}")


@app.command(name="schedule-backfill")
def schedule_backfill(
    jobsite: Optional[str] = typer.Option(None, "--jobsite", help="Only this jobsite id"),
    year: Optional[int] = typer.Option(None, "--year", help="Only reports dated in this year"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum reports to sync"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count only"),
):
    """Enqueue a backfill on the arq worker."""
    _load_config()

    async def _enqueue() -> Optional[str]:
        try:
            queue = await get_queue()
        except RedisConnectionError as e:
            raise TransientInfraFailure(f"Redis unreachable: {e}") from e
        try:
            job = await queue.enqueue_job(
                "run_backfill", jobsite_id=jobsite, year=year, limit=limit, dry_run=dry_run
            )
        finally:
            await queue.aclose()
        return job.job_id if job else None

    job_id = _run(_enqueue())
    if job_id is None:
        console.print("[yellow]A backfill job with this id is already queued[/yellow]")
        return
    console.print(f"[bold green]✓[/bold green] Enqueued backfill job {job_id}")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
