"""Backfill / reconciliation job.

Walks the source store directly, bypassing the broker, and feeds every
document through the same entity syncs the live consumer uses. Reports
stream through a cursor in date order, archived ones included; invoices
are walked separately by jobsite containment. A final sweep archives
jobsites, reports and invoices still active in the reporting store whose source
document no longer exists.

Used for cold start, recovery after broker outages, and correction after
a sync bug fix. Each document commits in its own transaction, so a failure
is counted and the run continues. A connectivity failure aborts the run.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select

from jobsync.core.errors import classify_failure
from jobsync.db.connection import Database
from jobsync.db.models import DimDailyReport, DimJobsite, FactInvoice, SyncRunLogModel
from jobsync.source.store import DAILY_REPORTS, JOBSITES, DocumentStore, to_object_id
from jobsync.sync.handlers import (
    EntitySync,
    SyncContext,
    daily_report,
    handle,
    invoice,
    jobsite,
    sync_document,
)
from jobsync.sync.types import RunStatus, SyncAction, SyncOutcome, SyncResult

logger = logging.getLogger(__name__)

# Natural ids checked against the source per round trip during the sweep
SWEEP_BATCH = 500


@dataclass
class BackfillOptions:
    """Filters for a reconciliation run."""

    jobsite_id: Optional[str] = None
    year: Optional[int] = None
    limit: Optional[int] = None
    dry_run: bool = False
    include_invoices: bool = True

    def year_range(self) -> Optional[tuple[datetime, datetime]]:
        if not self.year:
            return None
        return datetime(self.year, 1, 1), datetime(self.year + 1, 1, 1)

    def report_query(self) -> dict[str, Any]:
        query: dict[str, Any] = {}
        if self.jobsite_id:
            query["jobsite"] = to_object_id(self.jobsite_id)
        if self.year:
            start, end = self.year_range()
            query["date"] = {"$gte": start, "$lt": end}
        return query

    def jobsite_query(self) -> dict[str, Any]:
        if self.jobsite_id:
            return {"_id": to_object_id(self.jobsite_id)}
        return {}

    def as_filters(self) -> dict[str, Any]:
        return {
            "jobsite_id": self.jobsite_id,
            "year": self.year,
            "limit": self.limit,
            "include_invoices": self.include_invoices,
        }


@dataclass
class BackfillStats:
    """Counters reported at the end of a run.

    ``reports_archived`` counts walked reports flagged archived at the
    source; ``archived`` counts rows archived by the sweep because their
    source document is gone.
    """

    reports_seen: int = 0
    reports_synced: int = 0
    reports_archived: int = 0
    reports_skipped: int = 0
    jobsites_seen: int = 0
    jobsites_synced: int = 0
    archived: int = 0
    errors: int = 0
    facts: Counter = field(default_factory=Counter)
    dry_run: bool = False
    duration_seconds: float = 0.0

    @property
    def status(self) -> RunStatus:
        if self.dry_run:
            return RunStatus.SKIPPED
        if self.errors == 0:
            return RunStatus.SUCCESS
        if self.reports_synced or self.reports_archived or self.jobsites_synced or self.archived:
            return RunStatus.PARTIAL_SUCCESS
        return RunStatus.FAILED

    def as_counters(self) -> dict[str, Any]:
        return {
            "reports_seen": self.reports_seen,
            "reports_synced": self.reports_synced,
            "reports_archived": self.reports_archived,
            "reports_skipped": self.reports_skipped,
            "jobsites_seen": self.jobsites_seen,
            "jobsites_synced": self.jobsites_synced,
            "archived": self.archived,
            "facts": dict(self.facts),
        }


class BackfillJob:
    """Drives entity syncs over the source collections.

    Usage:
        job = BackfillJob(database, store, BackfillOptions(year=2024))
        stats = await job.run()
    """

    def __init__(
        self,
        database: Database,
        store: DocumentStore,
        options: Optional[BackfillOptions] = None,
        progress_every: int = 10,
    ):
        self.database = database
        self.store = store
        self.options = options or BackfillOptions()
        self.progress_every = max(progress_every, 1)
        self.run_timestamp = datetime.utcnow()

    async def run(self) -> BackfillStats:
        started = time.monotonic()
        stats = BackfillStats(dry_run=self.options.dry_run)
        logger.info(f"Starting backfill at {self.run_timestamp} with {self.options.as_filters()}")

        if self.options.dry_run:
            await self._count(stats)
        else:
            await self._sync_reports(stats)
            if self.options.include_invoices:
                await self._sync_jobsites(stats)

        # A limited run is a sample; deletions are only reconciled on complete walks
        if not self.options.limit:
            await self._sweep_deleted(stats)

        stats.duration_seconds = round(time.monotonic() - started, 2)
        await self._log_run(stats)

        logger.info(
            f"Backfill {stats.status.value}: {stats.reports_synced}/{stats.reports_seen} reports "
            f"({stats.reports_archived} archived at source), "
            f"{stats.jobsites_synced}/{stats.jobsites_seen} jobsites, "
            f"{stats.archived} deleted at source, "
            f"{stats.errors} errors in {stats.duration_seconds}s"
        )
        return stats

    async def _count(self, stats: BackfillStats) -> None:
        reports = await self.store.count(DAILY_REPORTS, self.options.report_query())
        if self.options.limit:
            reports = min(reports, self.options.limit)
        stats.reports_seen = reports
        if self.options.include_invoices:
            stats.jobsites_seen = await self.store.count(JOBSITES, self.options.jobsite_query())
        logger.info(f"Dry run: would sync {stats.reports_seen} reports, {stats.jobsites_seen} jobsites")

    async def _apply(
        self,
        sync: EntitySync,
        natural_id: str,
        stats: BackfillStats,
        apply: Callable[[SyncContext], Awaitable[SyncResult]],
    ) -> Optional[SyncResult]:
        """Run ``apply`` in its own transaction; a non-transient failure is counted."""
        try:
            async with self.database.session() as session:
                result = await apply(SyncContext(store=self.store, session=session))
        except Exception as e:
            if classify_failure(e) == "transient":
                raise
            stats.errors += 1
            logger.error(f"Backfill failed for {sync.entity} {natural_id}: {e}")
            return None

        stats.facts.update(result.counts)
        return result

    async def _sync_one(self, sync: EntitySync, raw: dict, stats: BackfillStats) -> Optional[bool]:
        """Sync one document.

        Returns True when loaded, False when skipped, None on a counted failure.
        """
        result = await self._apply(
            sync, str(raw.get("_id")), stats, lambda ctx: sync_document(sync, ctx, raw)
        )
        if result is None:
            return None
        return result.outcome is SyncOutcome.DONE

    async def _sync_reports(self, stats: BackfillStats) -> None:
        cursor = self.store.stream(
            DAILY_REPORTS,
            self.options.report_query(),
            sort=[("date", 1)],
            limit=self.options.limit,
        )
        async for raw in cursor:
            stats.reports_seen += 1
            loaded = await self._sync_one(daily_report.SYNC, raw, stats)
            if loaded and raw.get("archived"):
                stats.reports_archived += 1
            elif loaded:
                stats.reports_synced += 1
            elif loaded is False:
                stats.reports_skipped += 1

            if stats.reports_seen % self.progress_every == 0:
                logger.info(
                    f"Progress: {stats.reports_seen} reports, {stats.errors} errors, "
                    f"{sum(stats.facts.values())} facts"
                )

    async def _sync_jobsites(self, stats: BackfillStats) -> None:
        async for raw in self.store.stream(JOBSITES, self.options.jobsite_query()):
            stats.jobsites_seen += 1
            if await self._sync_one(jobsite.SYNC, raw, stats):
                stats.jobsites_synced += 1

    async def _active_ids(self, model: type) -> list[str]:
        """Natural keys of active ``model`` rows within the run's jobsite/year scope."""
        stmt = select(model.mongo_id).where(model.archived_at.is_(None))
        if model is DimJobsite and self.options.jobsite_id:
            stmt = stmt.where(DimJobsite.mongo_id == self.options.jobsite_id)
        elif self.options.jobsite_id:
            stmt = stmt.join(DimJobsite, model.jobsite_id == DimJobsite.id).where(
                DimJobsite.mongo_id == self.options.jobsite_id
            )
        if model is DimDailyReport and self.options.year:
            start, end = self.options.year_range()
            stmt = stmt.where(model.report_date >= start, model.report_date < end)

        async with self.database.session() as session:
            return list((await session.scalars(stmt.order_by(model.mongo_id))).all())

    async def _sweep(self, sync: EntitySync, model: type, stats: BackfillStats) -> None:
        natural_ids = await self._active_ids(model)
        for start in range(0, len(natural_ids), SWEEP_BATCH):
            batch = natural_ids[start : start + SWEEP_BATCH]
            present = await self.store.existing_ids(sync.collection, batch)
            for natural_id in batch:
                if natural_id in present:
                    continue
                if self.options.dry_run:
                    stats.archived += 1
                    continue
                result = await self._apply(
                    sync,
                    natural_id,
                    stats,
                    lambda ctx: handle(sync, ctx, natural_id, SyncAction.DELETED),
                )
                if result is not None:
                    stats.archived += 1

    async def _sweep_deleted(self, stats: BackfillStats) -> None:
        """Archive rows whose source document was deleted without a processed event."""
        await self._sweep(jobsite.SYNC, DimJobsite, stats)
        await self._sweep(daily_report.SYNC, DimDailyReport, stats)
        if self.options.include_invoices:
            await self._sweep(invoice.SYNC, FactInvoice, stats)
        if stats.archived:
            verb = "Would archive" if self.options.dry_run else "Archived"
            logger.info(f"{verb} {stats.archived} rows deleted at source")

    async def _log_run(self, stats: BackfillStats) -> None:
        async with self.database.session() as session:
            session.add(
                SyncRunLogModel(
                    run_timestamp=self.run_timestamp,
                    status=stats.status.value,
                    dry_run=stats.dry_run,
                    filters=self.options.as_filters(),
                    counters=stats.as_counters(),
                    errors=stats.errors,
                    duration_seconds=stats.duration_seconds,
                )
            )
