"""Integration tests for daily report sync and its report-scoped children.

Source documents live in mongomock; facts land in SQLite. Each scenario
drives change events through the registered entity syncs exactly as the
consumer would.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from bson import ObjectId

from jobsync.db.models import (
    DimCrew,
    DimDailyReport,
    DimEmployee,
    DimJobsite,
    FactEmployeeWork,
    FactProduction,
    FactVehicleWork,
)
from jobsync.source import store as collections
from jobsync.sync.types import SyncOutcome

SHIFT_START = datetime(2024, 2, 1, 8)
SHIFT_END = datetime(2024, 2, 1, 16)


@pytest_asyncio.fixture
async def paving_day(seed):
    """Jobsite, crew, an employee paid $20 from 2024-01-01 and one 8 hour shift."""
    jobsite = await seed.jobsite()
    crew = await seed.crew(type="Paving")
    employee = await seed.employee(rates=[(datetime(2024, 1, 1), 20)])
    work = await seed.employee_work(employee, SHIFT_START, SHIFT_END)
    report = await seed.daily_report(jobsite, crew, employee_work=[work])
    return {
        "jobsite": jobsite,
        "crew": crew,
        "employee": employee,
        "work": work,
        "report": report,
    }


@pytest.mark.asyncio
async def test_report_sync_writes_employee_work_fact(paving_day, run_sync, fetch_rows):
    result = await run_sync("daily_report", paving_day["report"])

    assert result.outcome is SyncOutcome.DONE
    assert result.counts == {"fact_employee_work": 1}

    (fact,) = await fetch_rows(FactEmployeeWork)
    assert fact.mongo_id == paving_day["work"]
    assert fact.hours == Decimal("8")
    assert fact.hourly_rate == Decimal("20")
    assert fact.crew_type == "Paving"
    assert fact.archived_at is None

    (report,) = await fetch_rows(DimDailyReport)
    assert fact.daily_report_id == report.id
    assert report.mongo_id == paving_day["report"]
    assert len(await fetch_rows(DimJobsite)) == 1
    assert len(await fetch_rows(DimCrew)) == 1
    assert len(await fetch_rows(DimEmployee)) == 1


@pytest.mark.asyncio
async def test_report_sync_is_idempotent(paving_day, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])
    (first,) = await fetch_rows(FactEmployeeWork)

    await run_sync("daily_report", paving_day["report"], "updated")
    (second,) = await fetch_rows(FactEmployeeWork)

    assert first.id == second.id
    assert second.hours == first.hours
    assert second.hourly_rate == first.hourly_rate
    assert len(await fetch_rows(DimDailyReport)) == 1


@pytest.mark.asyncio
async def test_child_event_before_report_event(paving_day, run_sync, fetch_rows):
    """A child synced ahead of its report converges on the same rows."""
    result = await run_sync("employee_work", paving_day["work"], "created")
    assert result.outcome is SyncOutcome.DONE
    (child_first,) = await fetch_rows(FactEmployeeWork)

    await run_sync("daily_report", paving_day["report"], "created")
    (after_report,) = await fetch_rows(FactEmployeeWork)

    assert child_first.id == after_report.id
    assert after_report.hourly_rate == Decimal("20")
    assert len(await fetch_rows(DimDailyReport)) == 1


@pytest.mark.asyncio
async def test_child_without_parent_report_loads_nothing(seed, run_sync, fetch_rows):
    employee = await seed.employee(rates=[(datetime(2024, 1, 1), 20)])
    work = await seed.employee_work(employee, SHIFT_START, SHIFT_END)

    result = await run_sync("employee_work", work, "created")

    assert result.outcome is SyncOutcome.DONE
    assert not result.counts
    assert await fetch_rows(FactEmployeeWork) == []


@pytest.mark.asyncio
async def test_removed_child_is_archived_and_restored(paving_day, seed, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    await seed.replace(collections.DAILY_REPORTS, paving_day["report"], employeeWork=[])
    await run_sync("daily_report", paving_day["report"])
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert fact.archived_at is not None

    await seed.replace(
        collections.DAILY_REPORTS,
        paving_day["report"],
        employeeWork=[ObjectId(paving_day["work"])],
    )
    await run_sync("daily_report", paving_day["report"])
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert fact.archived_at is None


@pytest.mark.asyncio
async def test_child_delete_event_archives_fact(paving_day, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    result = await run_sync("employee_work", paving_day["work"], "deleted")

    assert result.outcome is SyncOutcome.DELETED
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert fact.archived_at is not None


@pytest.mark.asyncio
async def test_report_delete_cascades_to_facts(paving_day, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    result = await run_sync("daily_report", paving_day["report"], "deleted")

    assert result.outcome is SyncOutcome.DELETED
    (report,) = await fetch_rows(DimDailyReport)
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert report.archived_at is not None
    assert fact.archived_at is not None


@pytest.mark.asyncio
async def test_delete_of_unsynced_report_is_a_noop(run_sync, fetch_rows):
    result = await run_sync("daily_report", str(ObjectId()), "deleted")

    assert result.outcome is SyncOutcome.DELETED
    assert await fetch_rows(DimDailyReport) == []


@pytest.mark.asyncio
async def test_archived_report_archives_facts_once(paving_day, seed, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])
    await seed.replace(collections.DAILY_REPORTS, paving_day["report"], archived=True)

    result = await run_sync("daily_report", paving_day["report"])
    assert result.outcome is SyncOutcome.DONE
    (report,) = await fetch_rows(DimDailyReport)
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert report.archived_at is not None
    assert fact.archived_at is not None

    await run_sync("daily_report", paving_day["report"])
    (again,) = await fetch_rows(DimDailyReport)
    assert again.archived_at == report.archived_at


@pytest.mark.asyncio
async def test_missing_report_is_skipped(run_sync):
    result = await run_sync("daily_report", str(ObjectId()))
    assert result.outcome is SyncOutcome.SKIPPED


@pytest.mark.asyncio
async def test_report_with_missing_crew_is_skipped(paving_day, seed, run_sync, fetch_rows):
    await seed.remove(collections.CREWS, paving_day["crew"])

    result = await run_sync("daily_report", paving_day["report"])

    assert result.outcome is SyncOutcome.SKIPPED
    assert await fetch_rows(DimDailyReport) == []
    assert await fetch_rows(FactEmployeeWork) == []


@pytest.mark.asyncio
async def test_child_with_missing_employee_is_skipped(paving_day, seed, run_sync, fetch_rows):
    await seed.remove(collections.EMPLOYEES, paving_day["employee"])

    result = await run_sync("daily_report", paving_day["report"])

    assert result.outcome is SyncOutcome.DONE
    assert not result.counts
    assert await fetch_rows(FactEmployeeWork) == []
    assert len(await fetch_rows(DimDailyReport)) == 1


@pytest.mark.asyncio
async def test_employee_rate_change_reprices_work(paving_day, seed, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    await seed.replace(
        collections.EMPLOYEES,
        paving_day["employee"],
        rates=[{"date": datetime(2024, 1, 1), "rate": 25}],
    )
    result = await run_sync("employee", paving_day["employee"])

    assert result.counts == {"fact_employee_work": 1}
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert fact.hourly_rate == Decimal("25")


@pytest.mark.asyncio
async def test_employee_delete_cascades_to_work(paving_day, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    await run_sync("employee", paving_day["employee"], "deleted")

    (employee,) = await fetch_rows(DimEmployee)
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert employee.archived_at is not None
    assert fact.archived_at is not None


@pytest.mark.asyncio
async def test_crew_type_change_updates_facts(paving_day, seed, run_sync, fetch_rows):
    await run_sync("daily_report", paving_day["report"])

    await seed.replace(collections.CREWS, paving_day["crew"], type="Concrete")
    result = await run_sync("crew", paving_day["crew"])

    assert result.counts == {"fact_employee_work": 1}
    (crew,) = await fetch_rows(DimCrew)
    (fact,) = await fetch_rows(FactEmployeeWork)
    assert crew.type == "Concrete"
    assert fact.crew_type == "Concrete"


@pytest.mark.asyncio
async def test_vehicle_work_and_production(seed, run_sync, fetch_rows):
    jobsite = await seed.jobsite()
    crew = await seed.crew(type="Base")
    vehicle = await seed.vehicle(rates=[(datetime(2024, 1, 1), 110)])
    vehicle_work = await seed.vehicle_work(vehicle, hours=6.5)
    production = await seed.production(quantity=250, unit="tonnes")
    report = await seed.daily_report(
        jobsite, crew, vehicle_work=[vehicle_work], production=[production]
    )

    result = await run_sync("daily_report", report)

    assert result.counts == {"fact_vehicle_work": 1, "fact_production": 1}
    (vehicle_fact,) = await fetch_rows(FactVehicleWork)
    (production_fact,) = await fetch_rows(FactProduction)
    assert vehicle_fact.hours == Decimal("6.5")
    assert vehicle_fact.hourly_rate == Decimal("110")
    assert vehicle_fact.crew_type == "Base"
    assert production_fact.quantity == Decimal("250")
    assert production_fact.unit == "tonnes"

    await run_sync("production", production, "deleted")
    (production_fact,) = await fetch_rows(FactProduction)
    assert production_fact.archived_at is not None
