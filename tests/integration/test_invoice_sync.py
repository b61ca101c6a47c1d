"""Integration tests for invoice facts and their jobsite containment."""

from __future__ import annotations

from decimal import Decimal

import pytest
from bson import ObjectId

from jobsync.db.models import DimCompany, DimJobsite, FactInvoice
from jobsync.source import store as collections
from jobsync.sync.types import SyncOutcome


@pytest.mark.asyncio
async def test_revenue_invoice(seed, run_sync, fetch_rows):
    company = await seed.company("City of Calgary")
    invoice = await seed.invoice(company, number="R-100", cost=25000)
    await seed.jobsite(revenueInvoices=[ObjectId(invoice)])

    result = await run_sync("invoice", invoice, "created")

    assert result.outcome is SyncOutcome.DONE
    assert result.counts == {"fact_invoice": 1}
    (fact,) = await fetch_rows(FactInvoice)
    (jobsite,) = await fetch_rows(DimJobsite)
    (dim_company,) = await fetch_rows(DimCompany)
    assert fact.direction == "revenue"
    assert fact.invoice_type == "external"
    assert fact.invoice_number == "R-100"
    assert fact.amount == Decimal("25000")
    assert fact.jobsite_id == jobsite.id
    assert fact.company_id == dim_company.id


@pytest.mark.asyncio
async def test_expense_and_accrual_invoice(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company, accrual=True, internal=True)
    await seed.jobsite(expenseInvoices=[ObjectId(invoice)])

    await run_sync("invoice", invoice)

    (fact,) = await fetch_rows(FactInvoice)
    assert fact.direction == "expense"
    assert fact.invoice_type == "accrual"


@pytest.mark.asyncio
async def test_jobsite_material_invoice_is_expense(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company, internal=True)
    material = await seed.material()
    jobsite_material = await seed.jobsite_material(
        material, company, invoices=[ObjectId(invoice)]
    )
    # Also listed as revenue: material containment takes precedence
    await seed.jobsite(
        materials=[ObjectId(jobsite_material)], revenueInvoices=[ObjectId(invoice)]
    )

    await run_sync("invoice", invoice)

    (fact,) = await fetch_rows(FactInvoice)
    assert fact.direction == "expense"
    assert fact.invoice_type == "internal"


@pytest.mark.asyncio
async def test_uncontained_invoice_is_not_loaded(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company)

    result = await run_sync("invoice", invoice)

    assert result.outcome is SyncOutcome.DONE
    assert not result.counts
    assert await fetch_rows(FactInvoice) == []


@pytest.mark.asyncio
async def test_invoice_removed_from_jobsite_is_archived(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company)
    jobsite = await seed.jobsite(revenueInvoices=[ObjectId(invoice)])
    await run_sync("invoice", invoice)

    await seed.replace(collections.JOBSITES, jobsite, revenueInvoices=[])
    await run_sync("invoice", invoice, "updated")

    (fact,) = await fetch_rows(FactInvoice)
    assert fact.archived_at is not None


@pytest.mark.asyncio
async def test_invoice_missing_company_is_skipped(seed, run_sync, fetch_rows):
    invoice = await seed.invoice(str(ObjectId()))
    await seed.jobsite(revenueInvoices=[ObjectId(invoice)])

    result = await run_sync("invoice", invoice)

    assert result.outcome is SyncOutcome.SKIPPED
    assert await fetch_rows(FactInvoice) == []


@pytest.mark.asyncio
async def test_invoice_delete_archives_fact(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company)
    await seed.jobsite(revenueInvoices=[ObjectId(invoice)])
    await run_sync("invoice", invoice)

    result = await run_sync("invoice", invoice, "deleted")

    assert result.outcome is SyncOutcome.DELETED
    (fact,) = await fetch_rows(FactInvoice)
    assert fact.archived_at is not None


@pytest.mark.asyncio
async def test_jobsite_sync_reconciles_invoices(seed, run_sync, fetch_rows):
    company = await seed.company()
    revenue = await seed.invoice(company, number="R-1")
    expense = await seed.invoice(company, number="E-1")
    jobsite = await seed.jobsite(
        revenueInvoices=[ObjectId(revenue)], expenseInvoices=[ObjectId(expense)]
    )

    result = await run_sync("jobsite", jobsite)

    assert result.counts == {"fact_invoice": 2}
    directions = {f.invoice_number: f.direction for f in await fetch_rows(FactInvoice)}
    assert directions == {"R-1": "revenue", "E-1": "expense"}

    await seed.replace(collections.JOBSITES, jobsite, expenseInvoices=[])
    await run_sync("jobsite", jobsite)

    archived = {f.invoice_number: f.archived_at is not None for f in await fetch_rows(FactInvoice)}
    assert archived == {"R-1": False, "E-1": True}


@pytest.mark.asyncio
async def test_jobsite_delete_cascades(seed, run_sync, fetch_rows):
    company = await seed.company()
    invoice = await seed.invoice(company)
    jobsite = await seed.jobsite(revenueInvoices=[ObjectId(invoice)])
    await run_sync("jobsite", jobsite)

    result = await run_sync("jobsite", jobsite, "deleted")

    assert result.outcome is SyncOutcome.DELETED
    (dim,) = await fetch_rows(DimJobsite)
    (fact,) = await fetch_rows(FactInvoice)
    assert dim.archived_at is not None
    assert fact.archived_at is not None
