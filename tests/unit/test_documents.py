"""Unit tests for source document parsing."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from bson import ObjectId

from jobsync.source.documents import (
    Crew,
    DailyReport,
    Jobsite,
    JobsiteMaterial,
    MaterialShipment,
)
from jobsync.source.store import to_object_id


class TestDailyReport:
    def test_ids_are_stringified(self):
        jobsite_id, crew_id, work_id = ObjectId(), ObjectId(), ObjectId()
        report = DailyReport.model_validate(
            {
                "_id": ObjectId(),
                "date": datetime(2024, 2, 1),
                "jobsite": jobsite_id,
                "crew": crew_id,
                "employeeWork": [work_id],
            }
        )

        assert report.jobsite == str(jobsite_id)
        assert report.employee_work == [str(work_id)]
        assert report.has_relations is False
        assert report.crew_type == "Unknown"

    def test_populated_relations(self):
        report = DailyReport.model_validate(
            {
                "_id": ObjectId(),
                "date": datetime(2024, 2, 1),
                "jobsite": {"_id": ObjectId(), "name": "Highway 1"},
                "crew": {"_id": ObjectId(), "name": "Crew A", "type": "Paving"},
            }
        )

        assert isinstance(report.jobsite, Jobsite)
        assert isinstance(report.crew, Crew)
        assert report.has_relations is True
        assert report.crew_type == "Paving"

    def test_missing_reference_is_none(self):
        report = DailyReport.model_validate(
            {"_id": ObjectId(), "date": datetime(2024, 2, 1), "jobsite": None}
        )
        assert report.jobsite is None
        assert report.has_relations is False


class TestMaterialShipment:
    def test_missing_quantity_is_zero(self):
        shipment = MaterialShipment.model_validate({"_id": ObjectId(), "quantity": None})
        assert shipment.quantity == Decimal("0")

    def test_vehicle_object(self):
        rate_id = ObjectId()
        shipment = MaterialShipment.model_validate(
            {
                "_id": ObjectId(),
                "quantity": 3,
                "vehicleObject": {
                    "source": "Smith Trucking",
                    "vehicleType": "Tandem",
                    "truckingRateId": rate_id,
                },
            }
        )
        assert shipment.vehicle_object.trucking_rate_id == str(rate_id)
        assert shipment.vehicle_object.delivered_rate_id is None

    def test_jobsite_material_population(self):
        unpopulated = JobsiteMaterial.model_validate(
            {"_id": ObjectId(), "material": ObjectId(), "supplier": ObjectId()}
        )
        populated = JobsiteMaterial.model_validate(
            {
                "_id": ObjectId(),
                "material": {"_id": ObjectId(), "name": "Asphalt"},
                "supplier": {"_id": ObjectId(), "name": "Gravel Co"},
            }
        )

        assert unpopulated.is_populated is False
        assert populated.is_populated is True


class TestToObjectId:
    def test_valid_hex_becomes_object_id(self):
        oid = ObjectId()
        assert to_object_id(str(oid)) == oid

    def test_other_strings_pass_through(self):
        assert to_object_id("legacy-key") == "legacy-key"
