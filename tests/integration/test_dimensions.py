"""Integration tests for natural-key upserts and rate history.

Runs against SQLite so the ON CONFLICT upsert path is exercised end to end.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from bson import ObjectId

from jobsync.db.models import (
    DimEmployee,
    DimEmployeeRate,
    DimJobsite,
    DimJobsiteMaterialRate,
    DimVehicle,
    DimVehicleRate,
)
from jobsync.source.documents import Employee, Jobsite, JobsiteMaterial, Vehicle
from jobsync.sync.dimensions import (
    find_dimension_id,
    jobsite_material_rate_for_date,
    rate_for_date,
    upsert_dim_employee,
    upsert_dim_jobsite,
    upsert_dim_jobsite_material,
    upsert_dim_vehicle,
)


def _employee(employee_id: str, name: str = "Pat Smith", rates=()) -> Employee:
    return Employee.model_validate(
        {
            "_id": employee_id,
            "name": name,
            "jobTitle": "Operator",
            "rates": [{"date": d, "rate": r} for d, r in rates],
        }
    )


@pytest.mark.asyncio
async def test_upsert_is_idempotent(database, fetch_rows):
    """Re-syncing the same document updates one row in place."""
    employee_id = str(ObjectId())

    async with database.session() as session:
        first = await upsert_dim_employee(session, _employee(employee_id))
    async with database.session() as session:
        second = await upsert_dim_employee(session, _employee(employee_id, name="Pat J. Smith"))

    rows = await fetch_rows(DimEmployee)
    assert first == second
    assert len(rows) == 1
    assert rows[0].name == "Pat J. Smith"
    assert rows[0].mongo_id == employee_id


@pytest.mark.asyncio
async def test_concurrent_first_sync_creates_one_row(database, fetch_rows):
    """Simultaneous deliveries for a new natural key converge on a single row."""
    jobsite = Jobsite.model_validate({"_id": str(ObjectId()), "name": "Highway 1"})

    async def _upsert():
        async with database.session() as session:
            return await upsert_dim_jobsite(session, jobsite)

    ids = await asyncio.gather(*(_upsert() for _ in range(8)))

    rows = await fetch_rows(DimJobsite, mongo_id=jobsite.id)
    assert len(set(ids)) == 1
    assert [row.id for row in rows] == [ids[0]]


@pytest.mark.asyncio
async def test_rate_history_is_replaced(database, fetch_rows):
    employee_id = str(ObjectId())
    history = [(datetime(2024, 1, 1), 10), (datetime(2024, 6, 1), 12)]

    async with database.session() as session:
        dim_id = await upsert_dim_employee(session, _employee(employee_id, rates=history))
    assert len(await fetch_rows(DimEmployeeRate, employee_id=dim_id)) == 2

    async with database.session() as session:
        await upsert_dim_employee(
            session, _employee(employee_id, rates=[(datetime(2024, 1, 1), 11)])
        )
    rates = await fetch_rows(DimEmployeeRate, employee_id=dim_id)
    assert [r.rate for r in rates] == [Decimal("11")]

    async with database.session() as session:
        await upsert_dim_employee(session, _employee(employee_id, rates=[]))
    assert await fetch_rows(DimEmployeeRate, employee_id=dim_id) == []


@pytest.mark.asyncio
async def test_rate_for_date_selects_effective_rate(database):
    vehicle = Vehicle.model_validate(
        {
            "_id": str(ObjectId()),
            "name": "Tandem 12",
            "rates": [
                {"date": datetime(2024, 1, 1), "rate": 10},
                {"date": datetime(2024, 6, 1), "rate": 12},
            ],
        }
    )

    async with database.session() as session:
        vehicle_id = await upsert_dim_vehicle(session, vehicle)
        march = await rate_for_date(session, DimVehicleRate, vehicle_id, datetime(2024, 3, 15))
        july = await rate_for_date(session, DimVehicleRate, vehicle_id, datetime(2024, 7, 1))
        before = await rate_for_date(session, DimVehicleRate, vehicle_id, datetime(2023, 12, 1))

    assert march == Decimal("10")
    assert july == Decimal("12")
    assert before == Decimal("0")


@pytest.mark.asyncio
async def test_jobsite_material_rates_standard_and_delivered(database, fetch_rows):
    delivered_id = str(ObjectId())
    jobsite = Jobsite.model_validate({"_id": str(ObjectId()), "name": "Highway 1"})
    jobsite_material = JobsiteMaterial.model_validate(
        {
            "_id": str(ObjectId()),
            "material": {"_id": str(ObjectId()), "name": "Asphalt HL3"},
            "supplier": {"_id": str(ObjectId()), "name": "Gravel Supply Co"},
            "unit": "tonnes",
            "rates": [{"date": datetime(2024, 1, 1), "rate": 30}],
            "deliveredRates": [
                {
                    "_id": delivered_id,
                    "title": "Delivered",
                    "rates": [{"date": datetime(2024, 1, 1), "rate": 42, "estimated": True}],
                }
            ],
        }
    )

    async with database.session() as session:
        jobsite_id = await upsert_dim_jobsite(session, jobsite)
        jm_id = await upsert_dim_jobsite_material(session, jobsite_material, jobsite_id)
        on = datetime(2024, 2, 1)
        standard = await jobsite_material_rate_for_date(session, jm_id, on)
        delivered = await jobsite_material_rate_for_date(session, jm_id, on, delivered_id)
        unknown = await jobsite_material_rate_for_date(session, jm_id, on, str(ObjectId()))

    assert standard == (Decimal("30"), False)
    assert delivered == (Decimal("42"), True)
    assert unknown == (Decimal("0"), True)
    assert len(await fetch_rows(DimJobsiteMaterialRate, jobsite_material_id=jm_id)) == 2


@pytest.mark.asyncio
async def test_find_dimension_id(database):
    employee_id = str(ObjectId())
    async with database.session() as session:
        assert await find_dimension_id(session, DimEmployee, employee_id) is None
        dim_id = await upsert_dim_employee(session, _employee(employee_id))
        assert await find_dimension_id(session, DimEmployee, employee_id) == dim_id
        assert await find_dimension_id(session, DimVehicle, employee_id) is None
