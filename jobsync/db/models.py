"""SQLAlchemy async models for the reporting star schema.

Dimension and fact tables mirror the operational document store. Every
synced table is keyed by the source document id (``mongo_id``) with a
unique constraint, so re-syncs update in place.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SyncedMixin:
    """Columns shared by every synced dimension and fact table."""

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    mongo_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------


class DimJobsite(SyncedMixin, Base):
    __tablename__ = "dim_jobsite"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    jobcode: Mapped[str | None] = mapped_column(Text, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DimCrew(SyncedMixin, Base):
    __tablename__ = "dim_crew"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)


class DimEmployee(SyncedMixin, Base):
    __tablename__ = "dim_employee"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    job_title: Mapped[str | None] = mapped_column(Text)


class DimVehicle(SyncedMixin, Base):
    __tablename__ = "dim_vehicle"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    vehicle_code: Mapped[str | None] = mapped_column(Text)
    vehicle_type: Mapped[str | None] = mapped_column(Text)
    is_rental: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_company: Mapped[str | None] = mapped_column(Text)


class DimMaterial(SyncedMixin, Base):
    __tablename__ = "dim_material"

    name: Mapped[str] = mapped_column(Text, nullable=False)


class DimCompany(SyncedMixin, Base):
    __tablename__ = "dim_company"

    name: Mapped[str] = mapped_column(Text, nullable=False)


class DimJobsiteMaterial(SyncedMixin, Base):
    """A material+supplier pairing on a jobsite, owner of a rate schedule."""

    __tablename__ = "dim_jobsite_material"

    jobsite_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_jobsite.id"), nullable=False, index=True
    )
    material_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_material.id"), nullable=False
    )
    supplier_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_company.id"), nullable=False
    )
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    unit: Mapped[str | None] = mapped_column(Text)
    cost_type: Mapped[str | None] = mapped_column(Text)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DimDailyReport(SyncedMixin, Base):
    """Per-report grain row; report-scoped facts hang off this."""

    __tablename__ = "dim_daily_report"

    jobsite_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_jobsite.id"), nullable=False, index=True
    )
    crew_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_crew.id"), nullable=False, index=True
    )
    report_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payroll_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


# ---------------------------------------------------------------------------
# Rate history (slowly-changing, replaced wholesale per owning dimension)
# ---------------------------------------------------------------------------


class DimEmployeeRate(Base):
    __tablename__ = "dim_employee_rate"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_employee.id", ondelete="CASCADE"), nullable=False
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_employee_rate_lookup", "employee_id", "effective_date"),
    )


class DimVehicleRate(Base):
    __tablename__ = "dim_vehicle_rate"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    vehicle_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_vehicle.id", ondelete="CASCADE"), nullable=False
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_vehicle_rate_lookup", "vehicle_id", "effective_date"),
    )


class DimJobsiteMaterialRate(Base):
    """Standard rates have ``delivered_rate_id`` NULL; delivered schedules carry its id."""

    __tablename__ = "dim_jobsite_material_rate"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    jobsite_material_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("dim_jobsite_material.id", ondelete="CASCADE"),
        nullable=False,
    )
    delivered_rate_id: Mapped[str | None] = mapped_column(Text)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "idx_jobsite_material_rate_lookup",
            "jobsite_material_id",
            "delivered_rate_id",
            "effective_date",
        ),
    )


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


class ReportScopedMixin:
    """Foreign keys and grain shared by facts that belong to a daily report."""

    daily_report_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_daily_report.id"), nullable=False, index=True
    )
    jobsite_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_jobsite.id"), nullable=False, index=True
    )
    crew_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_crew.id"), nullable=False, index=True
    )
    crew_type: Mapped[str] = mapped_column(Text, nullable=False)
    work_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FactEmployeeWork(ReportScopedMixin, SyncedMixin, Base):
    __tablename__ = "fact_employee_work"

    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_employee.id"), nullable=False, index=True
    )
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    job_title: Mapped[str | None] = mapped_column(Text)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (CheckConstraint("hours >= 0", name="check_employee_hours_non_negative"),)


class FactVehicleWork(ReportScopedMixin, SyncedMixin, Base):
    __tablename__ = "fact_vehicle_work"

    vehicle_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_vehicle.id"), nullable=False, index=True
    )
    job_title: Mapped[str | None] = mapped_column(Text)
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)


class FactMaterialShipment(ReportScopedMixin, SyncedMixin, Base):
    __tablename__ = "fact_material_shipment"

    jobsite_material_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_jobsite_material.id"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    tonnes: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))  # NULL: not tonnage
    vehicle_type: Mapped[str | None] = mapped_column(Text)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_rate_id: Mapped[str | None] = mapped_column(Text)


class FactNonCostedMaterial(ReportScopedMixin, SyncedMixin, Base):
    __tablename__ = "fact_non_costed_material"

    material_name: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    tonnes: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    vehicle_type: Mapped[str | None] = mapped_column(Text)


class FactTrucking(ReportScopedMixin, SyncedMixin, Base):
    """External trucking derived from a shipment; shares the shipment's mongo_id."""

    __tablename__ = "fact_trucking"

    trucking_type: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    rate_type: Mapped[str | None] = mapped_column(Text)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    vehicle_source: Mapped[str | None] = mapped_column(Text)
    vehicle_type: Mapped[str | None] = mapped_column(Text)
    vehicle_code: Mapped[str | None] = mapped_column(Text)
    trucking_rate_id: Mapped[str | None] = mapped_column(Text)


class FactProduction(ReportScopedMixin, SyncedMixin, Base):
    __tablename__ = "fact_production"

    job_title: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    description: Mapped[str | None] = mapped_column(Text)


class FactInvoice(SyncedMixin, Base):
    __tablename__ = "fact_invoice"

    jobsite_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_jobsite.id"), nullable=False, index=True
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("dim_company.id"), nullable=False, index=True
    )
    invoice_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    direction: Mapped[str] = mapped_column(Text, nullable=False)
    invoice_type: Mapped[str] = mapped_column(Text, nullable=False)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "direction IN ('revenue', 'expense')", name="check_invoice_direction_valid"
        ),
        CheckConstraint(
            "invoice_type IN ('external', 'internal', 'accrual')",
            name="check_invoice_type_valid",
        ),
    )


# ---------------------------------------------------------------------------
# Operational log
# ---------------------------------------------------------------------------


class SyncRunLogModel(Base):
    """One row per reconciliation (backfill) run, for drift monitoring."""

    __tablename__ = "sync_run_log"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    run_timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    filters: Mapped[dict | None] = mapped_column(JSON)
    counters: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_seconds: Mapped[float | None] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('SUCCESS', 'PARTIAL_SUCCESS', 'FAILED', 'SKIPPED')",
            name="check_sync_run_status_valid",
        ),
        CheckConstraint("errors >= 0", name="check_sync_run_errors_non_negative"),
    )


# Report-scoped fact tables, in the order the report handler syncs them.
REPORT_FACT_MODELS = (
    FactEmployeeWork,
    FactVehicleWork,
    FactMaterialShipment,
    FactNonCostedMaterial,
    FactTrucking,
    FactProduction,
)
