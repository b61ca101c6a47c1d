"""Pytest configuration and fixtures for jobsync tests.

Relational store: file-backed SQLite via aiosqlite, schema built from the
model metadata. Document store: mongomock-motor.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient
from sqlalchemy import select

from jobsync.config import DBConfig, MongoConfig
from jobsync.db.connection import Database
from jobsync.source import store as collections
from jobsync.source.store import DocumentStore
from jobsync.sync.handlers import SyncContext, get_entity_sync, handle
from jobsync.sync.types import SyncAction, SyncResult


@pytest_asyncio.fixture()
async def database(tmp_path) -> Database:
    """Reporting database with a fresh schema."""
    db = Database(DBConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'reporting.db'}")).open()
    await db.create_schema()
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def mongo_client() -> AsyncMongoMockClient:
    return AsyncMongoMockClient()


@pytest.fixture
def store(mongo_client: AsyncMongoMockClient) -> DocumentStore:
    return DocumentStore(
        MongoConfig(uri="mongodb://localhost:27017", database="bowmark_test"),
        client=mongo_client,
    )


class SourceSeeder:
    """Writes operational documents the way the source ODM stores them."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _insert(self, collection: str, doc: dict[str, Any]) -> str:
        doc.setdefault("_id", ObjectId())
        await self.store.db[collection].insert_one(doc)
        return str(doc["_id"])

    async def replace(self, collection: str, natural_id: str, **changes: Any) -> None:
        await self.store.db[collection].update_one(
            {"_id": ObjectId(natural_id)}, {"$set": changes}
        )

    async def remove(self, collection: str, natural_id: str) -> None:
        await self.store.db[collection].delete_one({"_id": ObjectId(natural_id)})

    async def jobsite(self, name: str = "Highway 1 Paving", **fields: Any) -> str:
        doc = {"name": name, "jobcode": "J-100", "active": True, "truckingRates": []}
        return await self._insert(collections.JOBSITES, {**doc, **fields})

    async def crew(self, name: str = "Paving Crew A", type: str = "Paving", **fields: Any) -> str:
        return await self._insert(collections.CREWS, {"name": name, "type": type, **fields})

    async def employee(
        self, name: str = "Pat Smith", rates: list[tuple[datetime, float]] = (), **fields: Any
    ) -> str:
        doc = {
            "name": name,
            "jobTitle": "Operator",
            "rates": [{"date": d, "rate": r} for d, r in rates],
        }
        return await self._insert(collections.EMPLOYEES, {**doc, **fields})

    async def vehicle(
        self, name: str = "Tandem 12", rates: list[tuple[datetime, float]] = (), **fields: Any
    ) -> str:
        doc = {
            "name": name,
            "vehicleCode": "T-12",
            "vehicleType": "Tandem Dump Truck",
            "rental": False,
            "sourceCompany": "Bow Mark",
            "rates": [{"date": d, "rate": r} for d, r in rates],
        }
        return await self._insert(collections.VEHICLES, {**doc, **fields})

    async def material(self, name: str = "Asphalt HL3") -> str:
        return await self._insert(collections.MATERIALS, {"name": name})

    async def company(self, name: str = "Gravel Supply Co") -> str:
        return await self._insert(collections.COMPANIES, {"name": name})

    async def jobsite_material(
        self, material: str, supplier: str, unit: str = "tonnes", **fields: Any
    ) -> str:
        doc = {
            "material": ObjectId(material),
            "supplier": ObjectId(supplier),
            "quantity": 1000,
            "unit": unit,
            "costType": "rate",
            "delivered": False,
            "rates": [],
            "deliveredRates": [],
            "invoices": [],
        }
        return await self._insert(collections.JOBSITE_MATERIALS, {**doc, **fields})

    async def employee_work(
        self, employee: str, start: datetime, end: datetime, **fields: Any
    ) -> str:
        doc = {
            "employee": ObjectId(employee),
            "jobTitle": "Operator",
            "startTime": start,
            "endTime": end,
        }
        return await self._insert(collections.EMPLOYEE_WORK, {**doc, **fields})

    async def vehicle_work(self, vehicle: str, hours: float = 6, **fields: Any) -> str:
        doc = {"vehicle": ObjectId(vehicle), "jobTitle": "Hauling", "hours": hours}
        return await self._insert(collections.VEHICLE_WORK, {**doc, **fields})

    async def production(self, quantity: float = 250, unit: str = "tonnes", **fields: Any) -> str:
        doc = {"jobTitle": "Base paving", "quantity": quantity, "unit": unit}
        return await self._insert(collections.PRODUCTIONS, {**doc, **fields})

    async def material_shipment(self, quantity: float = 3, **fields: Any) -> str:
        doc = {"quantity": quantity, "noJobsiteMaterial": False}
        return await self._insert(collections.MATERIAL_SHIPMENTS, {**doc, **fields})

    async def invoice(self, company: str, number: str = "INV-1", cost: float = 1500, **fields: Any) -> str:
        doc = {
            "company": ObjectId(company),
            "invoiceNumber": number,
            "cost": cost,
            "description": "Monthly billing",
            "internal": False,
            "accrual": False,
            "date": datetime(2024, 2, 28),
        }
        return await self._insert(collections.INVOICES, {**doc, **fields})

    async def daily_report(
        self,
        jobsite: str,
        crew: str,
        date: datetime = datetime(2024, 2, 1),
        employee_work: list[str] = (),
        vehicle_work: list[str] = (),
        production: list[str] = (),
        material_shipment: list[str] = (),
        **fields: Any,
    ) -> str:
        doc = {
            "date": date,
            "jobsite": ObjectId(jobsite),
            "crew": ObjectId(crew),
            "approved": True,
            "payrollComplete": False,
            "archived": False,
            "employeeWork": [ObjectId(i) for i in employee_work],
            "vehicleWork": [ObjectId(i) for i in vehicle_work],
            "production": [ObjectId(i) for i in production],
            "materialShipment": [ObjectId(i) for i in material_shipment],
        }
        return await self._insert(collections.DAILY_REPORTS, {**doc, **fields})


@pytest.fixture
def seed(store: DocumentStore) -> SourceSeeder:
    return SourceSeeder(store)


@pytest.fixture
def run_sync(
    database: Database, store: DocumentStore
) -> Callable[..., Awaitable[SyncResult]]:
    """Apply one change event through the registered entity sync, in its own transaction."""

    async def _run(entity: str, natural_id: str, action: str = "updated") -> SyncResult:
        async with database.session() as session:
            return await handle(
                get_entity_sync(entity),
                SyncContext(store=store, session=session),
                natural_id,
                SyncAction(action),
            )

    return _run


@pytest.fixture
def fetch_rows(database: Database) -> Callable[..., Awaitable[list]]:
    """Read every row of a model, optionally filtered by column values."""

    async def _fetch(model: type, **filters: Any) -> list:
        stmt = select(model).filter_by(**filters)
        async with database.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _fetch
