"""Fact upserts for report-scoped measurements and invoices.

Every function resolves the fact's own dimension, computes derived
fields and writes one row by natural key. Callers pass a ``ReportScope``
built by ``upsert_report_dimensions``; relations on the source document
must already be populated.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import (
    DimEmployeeRate,
    DimVehicleRate,
    FactEmployeeWork,
    FactInvoice,
    FactMaterialShipment,
    FactNonCostedMaterial,
    FactProduction,
    FactTrucking,
    FactVehicleWork,
)
from jobsync.db.upsert import upsert_by_natural_key
from jobsync.source.documents import (
    EmployeeWork,
    Invoice,
    JobsiteMaterial,
    MaterialShipment,
    Production,
    VehicleWork,
)
from jobsync.sync import derived
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.dimensions import (
    jobsite_material_rate_for_date,
    rate_for_date,
    upsert_dim_employee,
    upsert_dim_jobsite_material,
    upsert_dim_vehicle,
)
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)


async def upsert_fact_employee_work(
    session: AsyncSession, scope: ReportScope, work: EmployeeWork
) -> UUID:
    """Employee hours with the rate in effect on the report date."""
    employee_id = await upsert_dim_employee(session, work.employee)
    hourly_rate = await rate_for_date(session, DimEmployeeRate, employee_id, scope.work_date)

    return await upsert_by_natural_key(
        session,
        FactEmployeeWork,
        work.id,
        {
            **scope.fact_columns(),
            "employee_id": employee_id,
            "start_time": work.start_time,
            "end_time": work.end_time,
            "hours": derived.hours_between(work.start_time, work.end_time) or Decimal(0),
            "job_title": work.job_title,
            "hourly_rate": hourly_rate,
            "archived_at": work.archived_at,
        },
    )


async def upsert_fact_vehicle_work(
    session: AsyncSession, scope: ReportScope, work: VehicleWork
) -> UUID:
    vehicle_id = await upsert_dim_vehicle(session, work.vehicle)
    hourly_rate = await rate_for_date(session, DimVehicleRate, vehicle_id, scope.work_date)

    return await upsert_by_natural_key(
        session,
        FactVehicleWork,
        work.id,
        {
            **scope.fact_columns(),
            "vehicle_id": vehicle_id,
            "job_title": work.job_title,
            "hours": work.hours,
            "hourly_rate": hourly_rate,
            "archived_at": work.archived_at,
        },
    )


async def upsert_fact_production(
    session: AsyncSession, scope: ReportScope, production: Production
) -> UUID:
    return await upsert_by_natural_key(
        session,
        FactProduction,
        production.id,
        {
            **scope.fact_columns(),
            "job_title": production.job_title,
            "quantity": production.quantity,
            "unit": production.unit,
            "start_time": production.start_time,
            "end_time": production.end_time,
            "description": production.description,
            "archived_at": production.archived_at,
        },
    )


async def upsert_fact_material_shipment(
    session: AsyncSession, scope: ReportScope, shipment: MaterialShipment
) -> list[str]:
    """Write a shipment to the costed or non-costed table, plus trucking.

    A shipment whose kind changed since its last sync has its previous
    rows archived, so a natural key is active in at most one of the
    costed/non-costed tables.

    Returns:
        Table names written, empty when the shipment was skipped
    """
    if shipment.no_jobsite_material:
        await _upsert_fact_non_costed_material(session, scope, shipment)
        await archive_by_natural_key(session, FactMaterialShipment, shipment.id)
        await archive_by_natural_key(session, FactTrucking, shipment.id)
        return [FactNonCostedMaterial.__tablename__]

    jobsite_material = shipment.jobsite_material
    if not isinstance(jobsite_material, JobsiteMaterial) or not jobsite_material.is_populated:
        logger.warning(
            f"Material shipment {shipment.id} has no populated jobsite material; skipped"
        )
        return []

    jobsite_material_id = await upsert_dim_jobsite_material(
        session, jobsite_material, scope.jobsite_id
    )

    vehicle = shipment.vehicle_object
    delivered_rate_id = vehicle.delivered_rate_id if vehicle else None
    vehicle_type = vehicle.vehicle_type if vehicle else None
    rate, estimated = await jobsite_material_rate_for_date(
        session, jobsite_material_id, scope.work_date, delivered_rate_id
    )

    await upsert_by_natural_key(
        session,
        FactMaterialShipment,
        shipment.id,
        {
            **scope.fact_columns(),
            "jobsite_material_id": jobsite_material_id,
            "quantity": shipment.quantity,
            "unit": jobsite_material.unit,
            "tonnes": derived.to_tonnes(shipment.quantity, jobsite_material.unit, vehicle_type),
            "vehicle_type": vehicle_type,
            "rate": rate,
            "estimated": estimated,
            "delivered_rate_id": delivered_rate_id,
            "archived_at": shipment.archived_at,
        },
    )
    await archive_by_natural_key(session, FactNonCostedMaterial, shipment.id)
    written = [FactMaterialShipment.__tablename__]

    if vehicle and vehicle.trucking_rate_id:
        await upsert_fact_trucking(session, scope, shipment)
        written.append(FactTrucking.__tablename__)
    else:
        await archive_by_natural_key(session, FactTrucking, shipment.id)
    return written


async def _upsert_fact_non_costed_material(
    session: AsyncSession, scope: ReportScope, shipment: MaterialShipment
) -> UUID:
    vehicle_type = shipment.vehicle_object.vehicle_type if shipment.vehicle_object else None
    unit = shipment.unit or "unit"
    return await upsert_by_natural_key(
        session,
        FactNonCostedMaterial,
        shipment.id,
        {
            **scope.fact_columns(),
            "material_name": shipment.shipment_type or "Unknown",
            "supplier_name": shipment.supplier or "Unknown",
            "quantity": shipment.quantity,
            "unit": unit,
            "tonnes": derived.to_tonnes(shipment.quantity, unit, vehicle_type),
            "vehicle_type": vehicle_type,
            "archived_at": shipment.archived_at,
        },
    )


async def upsert_fact_trucking(
    session: AsyncSession, scope: ReportScope, shipment: MaterialShipment
) -> UUID:
    """External trucking cost for a shipment, priced from the jobsite's trucking rates.

    Shares the shipment's natural key. A missing schedule or no rate on or
    before the work date prices the trip at 0.
    """
    vehicle = shipment.vehicle_object
    schedule = next(
        (t for t in scope.jobsite.trucking_rates if t.id == vehicle.trucking_rate_id),
        None,
    )

    hours = derived.hours_between(shipment.start_time, shipment.end_time)
    rate = Decimal(0)
    rate_type: Optional[str] = None

    if schedule is None:
        logger.warning(
            f"Trucking rate {vehicle.trucking_rate_id} not found on jobsite "
            f"{scope.jobsite.id}; shipment {shipment.id} priced at 0"
        )
    else:
        entry = derived.select_rate_for_date(schedule.rates, scope.work_date)
        if entry is None:
            logger.warning(
                f"No trucking rate effective {scope.work_date.date()} for "
                f"{schedule.id}; shipment {shipment.id} priced at 0"
            )
        else:
            rate, rate_type = entry.rate, entry.type

    return await upsert_by_natural_key(
        session,
        FactTrucking,
        shipment.id,
        {
            **scope.fact_columns(),
            "trucking_type": schedule.title if schedule else None,
            "quantity": shipment.quantity,
            "hours": hours,
            "rate": rate,
            "rate_type": rate_type,
            "total_cost": derived.trucking_cost(rate, rate_type, shipment.quantity, hours),
            "vehicle_source": vehicle.source,
            "vehicle_type": vehicle.vehicle_type,
            "vehicle_code": vehicle.vehicle_code,
            "trucking_rate_id": vehicle.trucking_rate_id,
            "archived_at": shipment.archived_at,
        },
    )


async def upsert_fact_invoice(
    session: AsyncSession,
    invoice: Invoice,
    jobsite_id: UUID,
    company_id: UUID,
    direction: str,
) -> UUID:
    """Invoice fact; ``direction`` comes from whichever list contains the invoice."""
    return await upsert_by_natural_key(
        session,
        FactInvoice,
        invoice.id,
        {
            "jobsite_id": jobsite_id,
            "company_id": company_id,
            "invoice_date": invoice.date,
            "direction": direction,
            "invoice_type": derived.invoice_type(invoice.internal, invoice.accrual),
            "invoice_number": invoice.invoice_number,
            "amount": invoice.cost,
            "description": invoice.description,
            "archived_at": None,
        },
    )
