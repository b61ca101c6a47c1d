"""Entity sync registry.

Maps the entity segment of a routing key to its ``EntitySync``.
"""

from __future__ import annotations

from typing import Optional

from jobsync.sync.handlers import (
    crew,
    daily_report,
    employee,
    employee_work,
    invoice,
    jobsite,
    material_shipment,
    production,
    vehicle_work,
)
from jobsync.sync.handlers.base import (
    EntitySync,
    SyncContext,
    handle,
    sync_document,
)

REGISTRY: dict[str, EntitySync] = {
    sync.entity: sync
    for sync in (
        employee.SYNC,
        jobsite.SYNC,
        crew.SYNC,
        daily_report.SYNC,
        employee_work.SYNC,
        vehicle_work.SYNC,
        material_shipment.SYNC,
        production.SYNC,
        invoice.SYNC,
    )
}


def get_entity_sync(entity: str) -> Optional[EntitySync]:
    return REGISTRY.get(entity)


__all__ = [
    "REGISTRY",
    "EntitySync",
    "SyncContext",
    "get_entity_sync",
    "handle",
    "sync_document",
]
