"""Pydantic models for operational-store documents.

Fields follow the source's camelCase names through aliases. A relation is
either a nested model (populated by the fetcher) or a bare id string.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from jobsync.sync.constants import UNKNOWN_CREW_TYPE


def _as_id(value: Any) -> Any:
    if value is None or isinstance(value, (dict, BaseModel)):
        return value
    return str(value)


ObjectIdStr = Annotated[str, BeforeValidator(_as_id)]


class SourceDocument(BaseModel):
    """Common document behaviour: string ``_id`` and lenient extra fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: ObjectIdStr = Field(alias="_id")


class RateEntry(BaseModel):
    """One effective-dated rate in a source rate history."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: datetime
    rate: Decimal
    estimated: bool = False


class TruckingRate(RateEntry):
    type: str = "Hour"  # "Hour" or "Quantity"


class TruckingTypeRate(SourceDocument):
    title: Optional[str] = None
    rates: list[TruckingRate] = Field(default_factory=list)


class DeliveredRate(SourceDocument):
    title: Optional[str] = None
    rates: list[RateEntry] = Field(default_factory=list)


class Jobsite(SourceDocument):
    name: str
    jobcode: Optional[str] = None
    active: bool = False
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")
    trucking_rates: list[TruckingTypeRate] = Field(default_factory=list, alias="truckingRates")
    materials: list[ObjectIdStr] = Field(default_factory=list)
    revenue_invoices: list[ObjectIdStr] = Field(default_factory=list, alias="revenueInvoices")
    expense_invoices: list[ObjectIdStr] = Field(default_factory=list, alias="expenseInvoices")


class Crew(SourceDocument):
    name: str
    type: str = UNKNOWN_CREW_TYPE
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class Employee(SourceDocument):
    name: str
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    rates: list[RateEntry] = Field(default_factory=list)
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class Vehicle(SourceDocument):
    name: str
    vehicle_code: Optional[str] = Field(default=None, alias="vehicleCode")
    vehicle_type: Optional[str] = Field(default=None, alias="vehicleType")
    rental: bool = False
    source_company: Optional[str] = Field(default=None, alias="sourceCompany")
    rates: list[RateEntry] = Field(default_factory=list)
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class Material(SourceDocument):
    name: str
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class Company(SourceDocument):
    name: str
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class JobsiteMaterial(SourceDocument):
    material: Union[Material, ObjectIdStr, None] = None
    supplier: Union[Company, ObjectIdStr, None] = None
    quantity: Decimal = Decimal("0")
    unit: Optional[str] = None
    cost_type: Optional[str] = Field(default=None, alias="costType")
    delivered: bool = False
    rates: list[RateEntry] = Field(default_factory=list)
    delivered_rates: list[DeliveredRate] = Field(default_factory=list, alias="deliveredRates")
    invoices: list[ObjectIdStr] = Field(default_factory=list)

    @property
    def is_populated(self) -> bool:
        return isinstance(self.material, Material) and isinstance(self.supplier, Company)


class DailyReport(SourceDocument):
    date: datetime
    jobsite: Union[Jobsite, ObjectIdStr, None] = None
    crew: Union[Crew, ObjectIdStr, None] = None
    approved: bool = False
    payroll_complete: bool = Field(default=False, alias="payrollComplete")
    archived: bool = False
    employee_work: list[ObjectIdStr] = Field(default_factory=list, alias="employeeWork")
    vehicle_work: list[ObjectIdStr] = Field(default_factory=list, alias="vehicleWork")
    production: list[ObjectIdStr] = Field(default_factory=list)
    material_shipment: list[ObjectIdStr] = Field(default_factory=list, alias="materialShipment")

    @property
    def has_relations(self) -> bool:
        return isinstance(self.jobsite, Jobsite) and isinstance(self.crew, Crew)

    @property
    def crew_type(self) -> str:
        return self.crew.type if isinstance(self.crew, Crew) else UNKNOWN_CREW_TYPE


class EmployeeWork(SourceDocument):
    employee: Union[Employee, ObjectIdStr, None] = None
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class VehicleWork(SourceDocument):
    vehicle: Union[Vehicle, ObjectIdStr, None] = None
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    hours: Decimal = Decimal("0")
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class Production(SourceDocument):
    job_title: str = Field(alias="jobTitle")
    quantity: Decimal = Decimal("0")
    unit: str
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    description: Optional[str] = None
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class VehicleObject(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: Optional[str] = None
    vehicle_type: Optional[str] = Field(default=None, alias="vehicleType")
    vehicle_code: Optional[str] = Field(default=None, alias="vehicleCode")
    trucking_rate_id: Optional[ObjectIdStr] = Field(default=None, alias="truckingRateId")
    delivered_rate_id: Optional[ObjectIdStr] = Field(default=None, alias="deliveredRateId")


class MaterialShipment(SourceDocument):
    quantity: Decimal = Decimal("0")
    unit: Optional[str] = None
    no_jobsite_material: bool = Field(default=False, alias="noJobsiteMaterial")
    jobsite_material: Union[JobsiteMaterial, ObjectIdStr, None] = Field(
        default=None, alias="jobsiteMaterial"
    )
    shipment_type: Optional[str] = Field(default=None, alias="shipmentType")
    supplier: Optional[str] = None
    vehicle_object: Optional[VehicleObject] = Field(default=None, alias="vehicleObject")
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")

    @field_validator("quantity", mode="before")
    @classmethod
    def _missing_quantity_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class Invoice(SourceDocument):
    company: Union[Company, ObjectIdStr, None] = None
    invoice_number: str = Field(alias="invoiceNumber")
    cost: Decimal = Decimal("0")
    description: Optional[str] = None
    internal: bool = False
    accrual: bool = False
    date: datetime
