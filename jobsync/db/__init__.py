"""Reporting database layer with async SQLAlchemy."""

from jobsync.db.connection import Database
from jobsync.db.models import (
    REPORT_FACT_MODELS,
    Base,
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
    FactEmployeeWork,
    FactInvoice,
    FactMaterialShipment,
    FactNonCostedMaterial,
    FactProduction,
    FactTrucking,
    FactVehicleWork,
    SyncRunLogModel,
)
from jobsync.db.upsert import upsert_by_natural_key

__all__ = [
    "REPORT_FACT_MODELS",
    "Base",
    "Database",
    "DimCompany",
    "DimCrew",
    "DimDailyReport",
    "DimEmployee",
    "DimEmployeeRate",
    "DimJobsite",
    "DimJobsiteMaterial",
    "DimJobsiteMaterialRate",
    "DimMaterial",
    "DimVehicle",
    "DimVehicleRate",
    "FactEmployeeWork",
    "FactInvoice",
    "FactMaterialShipment",
    "FactNonCostedMaterial",
    "FactProduction",
    "FactTrucking",
    "FactVehicleWork",
    "SyncRunLogModel",
    "upsert_by_natural_key",
]
