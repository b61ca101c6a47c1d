"""Jobsite events -> dim_jobsite and the invoices it contains.

A jobsite owns three invoice lists (revenue, expense, and those of its
jobsite materials). Loading a jobsite resyncs every contained invoice and
archives invoice facts for the jobsite that no list references any more.
The backfill job walks invoices through this handler.
"""

from __future__ import annotations

import logging
from collections import Counter
from uuid import UUID

from jobsync.core.errors import ValidationFailure
from jobsync.db.models import (
    REPORT_FACT_MODELS,
    DimDailyReport,
    DimJobsite,
    DimJobsiteMaterial,
    FactInvoice,
)
from jobsync.source.documents import Jobsite
from jobsync.source.store import INVOICES, JOBSITE_MATERIALS, JOBSITES
from jobsync.sync.archival import archive_by_natural_key, archive_orphaned_facts, cascade_archive
from jobsync.sync.dimensions import find_dimension_id, upsert_dim_jobsite
from jobsync.sync.handlers import invoice as invoice_sync
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document

logger = logging.getLogger(__name__)


async def hydrate(ctx: SyncContext, raw: dict) -> Jobsite:
    return parse_document(Jobsite, raw)


def validate(jobsite: Jobsite) -> bool:
    return True


async def contained_invoices(ctx: SyncContext, jobsite: Jobsite) -> dict[str, str]:
    """Invoice id -> direction for every invoice the jobsite references.

    Precedence matches the invoice handler: material invoices first, then
    revenue, then expense.
    """
    directions: dict[str, str] = {}
    for material in await ctx.store.get_many(JOBSITE_MATERIALS, jobsite.materials):
        for invoice_id in material.get("invoices") or []:
            directions.setdefault(str(invoice_id), invoice_sync.EXPENSE)
    for invoice_id in jobsite.revenue_invoices:
        directions.setdefault(invoice_id, invoice_sync.REVENUE)
    for invoice_id in jobsite.expense_invoices:
        directions.setdefault(invoice_id, invoice_sync.EXPENSE)
    return directions


async def sync_jobsite_invoices(
    ctx: SyncContext, jobsite: Jobsite, jobsite_id: UUID
) -> Counter:
    counts: Counter = Counter()
    directions = await contained_invoices(ctx, jobsite)

    for raw in await ctx.store.get_many(INVOICES, directions):
        try:
            invoice = await invoice_sync.hydrate(ctx, raw)
        except ValidationFailure as e:
            logger.warning(f"Jobsite {jobsite.id}: skipping invoice: {e}")
            continue
        if not invoice_sync.validate(invoice):
            continue
        counts.update(
            await invoice_sync.write(ctx.session, invoice, jobsite_id, directions[invoice.id])
        )

    await archive_orphaned_facts(
        ctx.session,
        FactInvoice,
        list(directions),
        owner_column="jobsite_id",
        owner_id=jobsite_id,
    )
    return counts


async def load(ctx: SyncContext, jobsite: Jobsite) -> Counter:
    jobsite_id = await upsert_dim_jobsite(ctx.session, jobsite)
    return await sync_jobsite_invoices(ctx, jobsite, jobsite_id)


async def delete(ctx: SyncContext, natural_id: str) -> None:
    jobsite_id = await find_dimension_id(ctx.session, DimJobsite, natural_id)
    if jobsite_id is None:
        return
    await archive_by_natural_key(ctx.session, DimJobsite, natural_id)
    archived = await cascade_archive(
        ctx.session,
        (DimJobsiteMaterial, DimDailyReport, *REPORT_FACT_MODELS, FactInvoice),
        "jobsite_id",
        jobsite_id,
    )
    logger.info(f"Jobsite {natural_id} deleted; archived {archived} dependent rows")


SYNC = EntitySync(
    entity="jobsite",
    collection=JOBSITES,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
