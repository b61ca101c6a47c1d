"""arq worker for scheduled and on-demand reconciliation.

Run with: arq jobsync.worker.WorkerSettings
"""

import logging
import os
from typing import Any, Optional

from arq.connections import RedisSettings
from arq.cron import cron

from jobsync.backfill import BackfillJob, BackfillOptions
from jobsync.config import get_config
from jobsync.core.logging import configure_logging
from jobsync.core.startup import check_connectivity
from jobsync.db.connection import Database
from jobsync.source.store import DocumentStore

logger = logging.getLogger(__name__)

NIGHTLY_HOUR = int(os.environ.get("BACKFILL_NIGHTLY_HOUR", "3"))


async def startup(ctx: dict[str, Any]) -> None:
    """Open the shared clients when the worker starts."""
    config = get_config()
    configure_logging(config.log_level, config.json_logs)

    database = Database(config.db).open()
    store = DocumentStore(config.mongo).open()
    await check_connectivity("Reporting database", database.ping, config.backfill.connect_attempts)
    await check_connectivity("Document store", store.ping, config.backfill.connect_attempts)

    ctx["config"] = config
    ctx["database"] = database
    ctx["store"] = store
    logger.info("Worker started. Database and document store connected.")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Close the shared clients when the worker stops."""
    if "store" in ctx:
        await ctx["store"].close()
    if "database" in ctx:
        await ctx["database"].close()
    logger.info("Worker stopped. Connections closed.")


async def run_backfill(
    ctx: dict[str, Any],
    jobsite_id: Optional[str] = None,
    year: Optional[int] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Run one reconciliation pass as a background job."""
    options = BackfillOptions(jobsite_id=jobsite_id, year=year, limit=limit, dry_run=dry_run)
    job = BackfillJob(
        ctx["database"],
        ctx["store"],
        options,
        progress_every=ctx["config"].backfill.progress_every,
    )
    stats = await job.run()
    return {"status": stats.status.value, "errors": stats.errors, **stats.as_counters()}


async def nightly_reconciliation(ctx: dict[str, Any]) -> dict[str, Any]:
    """Full unfiltered backfill; repairs drift from rejected or lost events."""
    return await run_backfill(ctx)


class WorkerSettings:
    functions = [run_backfill]
    cron_jobs = [cron(nightly_reconciliation, hour=NIGHTLY_HOUR, minute=0)]
    on_startup = startup
    on_shutdown = shutdown
    job_timeout = 6 * 60 * 60
    redis_settings = RedisSettings.from_dsn(
        os.environ.get("REDIS_URL", "redis://redis:6379")
    )
