"""Invoice events -> fact_invoice.

Invoices carry no direction. It is resolved from whichever containment
list references the invoice, checked in order: a jobsite material's
invoices (expense), a jobsite's revenue invoices, a jobsite's expense
invoices.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import FactInvoice
from jobsync.source.documents import Company, Invoice, Jobsite
from jobsync.source.store import COMPANIES, INVOICES, JOBSITE_MATERIALS, JOBSITES
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.dimensions import upsert_dim_company, upsert_dim_jobsite
from jobsync.sync.facts import upsert_fact_invoice
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document, populate

logger = logging.getLogger(__name__)

REVENUE = "revenue"
EXPENSE = "expense"


async def hydrate(ctx: SyncContext, raw: dict) -> Invoice:
    await populate(ctx, raw, "company", COMPANIES)
    return parse_document(Invoice, raw)


def validate(invoice: Invoice) -> bool:
    if not isinstance(invoice.company, Company):
        logger.warning(f"Invoice {invoice.id} missing company reference")
        return False
    return True


async def find_jobsite_and_direction(
    ctx: SyncContext, invoice_id: str
) -> Optional[tuple[Jobsite, str]]:
    jobsite_material = await ctx.store.find_parent(JOBSITE_MATERIALS, "invoices", invoice_id)
    if jobsite_material is not None:
        raw = await ctx.store.find_parent(JOBSITES, "materials", str(jobsite_material["_id"]))
        if raw is not None:
            return parse_document(Jobsite, raw), EXPENSE

    for field, direction in (("revenueInvoices", REVENUE), ("expenseInvoices", EXPENSE)):
        raw = await ctx.store.find_parent(JOBSITES, field, invoice_id)
        if raw is not None:
            return parse_document(Jobsite, raw), direction
    return None


async def write(
    session: AsyncSession, invoice: Invoice, jobsite_id, direction: str
) -> list[str]:
    company_id = await upsert_dim_company(session, invoice.company)
    await upsert_fact_invoice(session, invoice, jobsite_id, company_id, direction)
    return [FactInvoice.__tablename__]


async def load(ctx: SyncContext, invoice: Invoice) -> Counter:
    found = await find_jobsite_and_direction(ctx, invoice.id)
    if found is None:
        archived = await archive_by_natural_key(ctx.session, FactInvoice, invoice.id)
        logger.warning(
            f"No jobsite references invoice {invoice.id}"
            + ("; archived its fact row" if archived else "")
        )
        return Counter()

    jobsite, direction = found
    jobsite_id = await upsert_dim_jobsite(ctx.session, jobsite)
    return Counter(await write(ctx.session, invoice, jobsite_id, direction))


async def delete(ctx: SyncContext, natural_id: str) -> None:
    await archive_by_natural_key(ctx.session, FactInvoice, natural_id)


SYNC = EntitySync(
    entity="invoice",
    collection=INVOICES,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
