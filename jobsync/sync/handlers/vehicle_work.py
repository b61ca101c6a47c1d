"""Vehicle work entries -> fact_vehicle_work."""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import FactVehicleWork
from jobsync.source.documents import Vehicle, VehicleWork
from jobsync.source.store import VEHICLE_WORK, VEHICLES
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.facts import upsert_fact_vehicle_work
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document, populate
from jobsync.sync.handlers.reports import ChildFamily, resolve_parent_scope
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)


async def hydrate(ctx: SyncContext, raw: dict) -> VehicleWork:
    await populate(ctx, raw, "vehicle", VEHICLES)
    return parse_document(VehicleWork, raw)


def validate(work: VehicleWork) -> bool:
    if not isinstance(work.vehicle, Vehicle):
        logger.warning(f"Vehicle work {work.id} missing vehicle reference")
        return False
    return True


async def write(session: AsyncSession, scope: ReportScope, work: VehicleWork) -> list[str]:
    await upsert_fact_vehicle_work(session, scope, work)
    return [FactVehicleWork.__tablename__]


async def load(ctx: SyncContext, work: VehicleWork) -> Counter:
    scope = await resolve_parent_scope(ctx, "vehicleWork", work.id)
    if scope is None:
        return Counter()
    return Counter(await write(ctx.session, scope, work))


async def delete(ctx: SyncContext, natural_id: str) -> None:
    await archive_by_natural_key(ctx.session, FactVehicleWork, natural_id)


FAMILY = ChildFamily(
    attr="vehicle_work",
    source_field="vehicleWork",
    collection=VEHICLE_WORK,
    hydrate=hydrate,
    validate=validate,
    write=write,
    models=(FactVehicleWork,),
)

SYNC = EntitySync(
    entity="vehicle_work",
    collection=VEHICLE_WORK,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
