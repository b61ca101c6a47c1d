"""Daily report aggregate -> report grain, its dimensions and every child fact.

Loading a report resyncs all four child lists and archives facts whose
natural key left a list; in-place array edits on the source emit no
per-child delete event, so this is where they are reconciled.
"""

from __future__ import annotations

import logging
from collections import Counter

from jobsync.core.errors import ValidationFailure
from jobsync.db.models import REPORT_FACT_MODELS, DimDailyReport
from jobsync.source.documents import DailyReport
from jobsync.source.store import DAILY_REPORTS
from jobsync.sync.archival import archive_by_natural_key, archive_orphaned_facts, cascade_archive
from jobsync.sync.dimensions import find_dimension_id, upsert_report_dimensions
from jobsync.sync.handlers import employee_work, material_shipment, production, vehicle_work
from jobsync.sync.handlers.base import EntitySync, SyncContext
from jobsync.sync.handlers.reports import ChildFamily, hydrate_report
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)

CHILD_FAMILIES: tuple[ChildFamily, ...] = (
    employee_work.FAMILY,
    vehicle_work.FAMILY,
    material_shipment.FAMILY,
    production.FAMILY,
)


def validate(report: DailyReport) -> bool:
    if not report.has_relations:
        logger.warning(f"Daily report {report.id} missing jobsite or crew reference")
        return False
    return True


async def sync_report_children(
    ctx: SyncContext, report: DailyReport, scope: ReportScope
) -> Counter:
    """Upsert every current child of ``report`` and archive the ones it dropped.

    Children with a missing reference or malformed document are skipped
    with a warning; any other failure propagates and aborts the report.

    Returns:
        Fact rows written, by table name
    """
    counts: Counter = Counter()

    for family in CHILD_FAMILIES:
        child_ids = getattr(report, family.attr)
        for raw in await ctx.store.get_many(family.collection, child_ids):
            try:
                child = await family.hydrate(ctx, raw)
            except ValidationFailure as e:
                logger.warning(f"Daily report {report.id}: skipping child: {e}")
                continue
            if not family.validate(child):
                continue
            counts.update(await family.write(ctx.session, scope, child))

        for model in family.models:
            await archive_orphaned_facts(
                ctx.session, model, child_ids, owner_id=scope.daily_report_id
            )

    return counts


async def load(ctx: SyncContext, report: DailyReport) -> Counter:
    scope = await upsert_report_dimensions(ctx.session, report)

    if report.archived:
        archived = await cascade_archive(
            ctx.session, REPORT_FACT_MODELS, "daily_report_id", scope.daily_report_id
        )
        logger.info(f"Daily report {report.id} is archived; archived {archived} fact rows")
        return Counter()

    return await sync_report_children(ctx, report, scope)


async def delete(ctx: SyncContext, natural_id: str) -> None:
    """Archive the report grain row and cascade to every fact scoped to it."""
    daily_report_id = await find_dimension_id(ctx.session, DimDailyReport, natural_id)
    if daily_report_id is None:
        logger.info(f"Daily report {natural_id} was never synced; nothing to archive")
        return

    await archive_by_natural_key(ctx.session, DimDailyReport, natural_id)
    await cascade_archive(ctx.session, REPORT_FACT_MODELS, "daily_report_id", daily_report_id)


SYNC = EntitySync(
    entity="daily_report",
    collection=DAILY_REPORTS,
    hydrate=hydrate_report,
    validate=validate,
    load=load,
    delete=delete,
)
