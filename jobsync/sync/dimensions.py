"""Dimension upserts and slowly-changing rate history.

Each ``upsert_dim_*`` writes one dimension row by natural key and returns
its surrogate id. Rate sub-tables are replaced wholesale whenever their
owning dimension syncs; source rate histories are short and append-only.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import (
    DimCompany,
    DimCrew,
    DimDailyReport,
    DimEmployee,
    DimEmployeeRate,
    DimJobsite,
    DimJobsiteMaterial,
    DimJobsiteMaterialRate,
    DimMaterial,
    DimVehicle,
    DimVehicleRate,
)
from jobsync.db.upsert import upsert_by_natural_key
from jobsync.source.documents import (
    Company,
    Crew,
    DailyReport,
    Employee,
    Jobsite,
    JobsiteMaterial,
    Material,
    RateEntry,
    Vehicle,
)
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)

# Rate sub-table -> column referencing its owning dimension
_RATE_OWNER_COLUMN = {
    DimEmployeeRate: DimEmployeeRate.employee_id,
    DimVehicleRate: DimVehicleRate.vehicle_id,
    DimJobsiteMaterialRate: DimJobsiteMaterialRate.jobsite_material_id,
}


# ---------------------------------------------------------------------------
# Rate history
# ---------------------------------------------------------------------------


async def _replace_rate_rows(
    session: AsyncSession,
    rate_model: type,
    owner_id: UUID,
    rows: list[dict[str, Any]],
) -> None:
    owner_column = _RATE_OWNER_COLUMN[rate_model]
    await session.execute(delete(rate_model).where(owner_column == owner_id))
    if rows:
        await session.execute(
            insert(rate_model),
            [{owner_column.key: owner_id, **row} for row in rows],
        )


async def sync_rate_history(
    session: AsyncSession,
    rate_model: type,
    owner_id: UUID,
    rates: Sequence[RateEntry],
) -> int:
    """Replace every rate row of one dimension with the current source list.

    An empty list clears the history.

    Returns:
        Number of rate rows written
    """
    rows = [{"rate": r.rate, "effective_date": r.date} for r in rates]
    await _replace_rate_rows(session, rate_model, owner_id, rows)
    return len(rows)


async def sync_jobsite_material_rates(
    session: AsyncSession, jobsite_material_id: UUID, jobsite_material: JobsiteMaterial
) -> int:
    """Replace standard and delivered rate schedules for a jobsite material.

    Standard rates carry ``delivered_rate_id = NULL``; each delivered
    schedule carries the id of its source sub-document.
    """
    rows: list[dict[str, Any]] = [
        {
            "delivered_rate_id": None,
            "rate": r.rate,
            "estimated": r.estimated,
            "effective_date": r.date,
        }
        for r in jobsite_material.rates
    ]
    for delivered in jobsite_material.delivered_rates:
        rows.extend(
            {
                "delivered_rate_id": delivered.id,
                "rate": r.rate,
                "estimated": r.estimated,
                "effective_date": r.date,
            }
            for r in delivered.rates
        )
    await _replace_rate_rows(session, DimJobsiteMaterialRate, jobsite_material_id, rows)
    return len(rows)


async def rate_for_date(
    session: AsyncSession, rate_model: type, owner_id: UUID, on: datetime
) -> Decimal:
    """Newest rate effective on or before ``on``; 0 when none exists."""
    owner_column = _RATE_OWNER_COLUMN[rate_model]
    stmt = (
        select(rate_model.rate)
        .where(owner_column == owner_id, rate_model.effective_date <= on)
        .order_by(rate_model.effective_date.desc())
        .limit(1)
    )
    rate = await session.scalar(stmt)
    if rate is None:
        logger.warning(
            "No %s effective on %s for %s; using 0",
            rate_model.__tablename__,
            on.date().isoformat(),
            owner_id,
        )
        return Decimal(0)
    return Decimal(rate)


async def jobsite_material_rate_for_date(
    session: AsyncSession,
    jobsite_material_id: UUID,
    on: datetime,
    delivered_rate_id: Optional[str] = None,
) -> tuple[Decimal, bool]:
    """Rate and estimated flag for a shipment.

    Looks in the delivered schedule named by ``delivered_rate_id``, else in
    the standard schedule. No match gives ``(0, True)``.
    """
    stmt = (
        select(DimJobsiteMaterialRate.rate, DimJobsiteMaterialRate.estimated)
        .where(
            DimJobsiteMaterialRate.jobsite_material_id == jobsite_material_id,
            DimJobsiteMaterialRate.effective_date <= on,
        )
        .order_by(DimJobsiteMaterialRate.effective_date.desc())
        .limit(1)
    )
    if delivered_rate_id:
        stmt = stmt.where(DimJobsiteMaterialRate.delivered_rate_id == delivered_rate_id)
    else:
        stmt = stmt.where(DimJobsiteMaterialRate.delivered_rate_id.is_(None))

    row = (await session.execute(stmt)).first()
    if row is None:
        logger.warning(
            "No material rate on %s for jobsite material %s (delivered=%s); flagged estimated",
            on.date().isoformat(),
            jobsite_material_id,
            delivered_rate_id,
        )
        return Decimal(0), True
    return Decimal(row.rate), bool(row.estimated)


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------


async def upsert_dim_jobsite(session: AsyncSession, jobsite: Jobsite) -> UUID:
    return await upsert_by_natural_key(
        session,
        DimJobsite,
        jobsite.id,
        {
            "name": jobsite.name,
            "jobcode": jobsite.jobcode,
            "active": jobsite.active,
            "archived_at": jobsite.archived_at,
        },
    )


async def upsert_dim_crew(session: AsyncSession, crew: Crew) -> UUID:
    return await upsert_by_natural_key(
        session,
        DimCrew,
        crew.id,
        {"name": crew.name, "type": crew.type, "archived_at": crew.archived_at},
    )


async def upsert_dim_employee(session: AsyncSession, employee: Employee) -> UUID:
    """Upsert the employee and replace its rate history."""
    employee_id = await upsert_by_natural_key(
        session,
        DimEmployee,
        employee.id,
        {
            "name": employee.name,
            "job_title": employee.job_title,
            "archived_at": employee.archived_at,
        },
    )
    await sync_rate_history(session, DimEmployeeRate, employee_id, employee.rates)
    return employee_id


async def upsert_dim_vehicle(session: AsyncSession, vehicle: Vehicle) -> UUID:
    """Upsert the vehicle and replace its rate history."""
    vehicle_id = await upsert_by_natural_key(
        session,
        DimVehicle,
        vehicle.id,
        {
            "name": vehicle.name,
            "vehicle_code": vehicle.vehicle_code,
            "vehicle_type": vehicle.vehicle_type,
            "is_rental": vehicle.rental,
            "source_company": vehicle.source_company,
            "archived_at": vehicle.archived_at,
        },
    )
    await sync_rate_history(session, DimVehicleRate, vehicle_id, vehicle.rates)
    return vehicle_id


async def upsert_dim_material(session: AsyncSession, material: Material) -> UUID:
    return await upsert_by_natural_key(
        session,
        DimMaterial,
        material.id,
        {"name": material.name, "archived_at": material.archived_at},
    )


async def upsert_dim_company(session: AsyncSession, company: Company) -> UUID:
    return await upsert_by_natural_key(
        session,
        DimCompany,
        company.id,
        {"name": company.name, "archived_at": company.archived_at},
    )


async def upsert_dim_jobsite_material(
    session: AsyncSession,
    jobsite_material: JobsiteMaterial,
    jobsite_id: UUID,
) -> UUID:
    """Upsert material, supplier and the jobsite pairing, then its rate schedules.

    ``jobsite_material`` must have material and supplier populated.
    """
    material_id = await upsert_dim_material(session, jobsite_material.material)
    supplier_id = await upsert_dim_company(session, jobsite_material.supplier)

    jobsite_material_id = await upsert_by_natural_key(
        session,
        DimJobsiteMaterial,
        jobsite_material.id,
        {
            "jobsite_id": jobsite_id,
            "material_id": material_id,
            "supplier_id": supplier_id,
            "quantity": jobsite_material.quantity,
            "unit": jobsite_material.unit,
            "cost_type": jobsite_material.cost_type,
            "delivered": jobsite_material.delivered,
        },
    )
    await sync_jobsite_material_rates(session, jobsite_material_id, jobsite_material)
    return jobsite_material_id


async def upsert_dim_daily_report(
    session: AsyncSession, report: DailyReport, jobsite_id: UUID, crew_id: UUID
) -> UUID:
    # The source only carries an ``archived`` flag; keep the first stamp
    return await upsert_by_natural_key(
        session,
        DimDailyReport,
        report.id,
        {
            "jobsite_id": jobsite_id,
            "crew_id": crew_id,
            "report_date": report.date,
            "approved": report.approved,
            "payroll_complete": report.payroll_complete,
            "archived_at": datetime.utcnow() if report.archived else None,
        },
        keep_first_archived=True,
    )


async def upsert_report_dimensions(session: AsyncSession, report: DailyReport) -> ReportScope:
    """Upsert jobsite, crew and report grain for a populated daily report."""
    jobsite_id = await upsert_dim_jobsite(session, report.jobsite)
    crew_id = await upsert_dim_crew(session, report.crew)
    daily_report_id = await upsert_dim_daily_report(session, report, jobsite_id, crew_id)
    return ReportScope(
        daily_report_id=daily_report_id,
        jobsite_id=jobsite_id,
        crew_id=crew_id,
        crew_type=report.crew_type,
        work_date=report.date,
        jobsite=report.jobsite,
    )


async def find_dimension_id(session: AsyncSession, model: type, mongo_id: str) -> Optional[UUID]:
    """Surrogate id for a natural key, or None when never synced."""
    return await session.scalar(select(model.id).where(model.mongo_id == mongo_id))
