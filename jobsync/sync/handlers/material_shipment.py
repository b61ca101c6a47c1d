"""Material shipments -> costed, non-costed and trucking facts.

One source shipment can produce a ``fact_material_shipment`` row (or a
``fact_non_costed_material`` row when it has no jobsite material) plus a
``fact_trucking`` row when it carries a trucking rate. All share the
shipment's natural key.
"""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import FactMaterialShipment, FactNonCostedMaterial, FactTrucking
from jobsync.source.documents import JobsiteMaterial, MaterialShipment
from jobsync.source.store import COMPANIES, JOBSITE_MATERIALS, MATERIAL_SHIPMENTS, MATERIALS
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.facts import upsert_fact_material_shipment
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document, populate
from jobsync.sync.handlers.reports import ChildFamily, resolve_parent_scope
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)

SHIPMENT_FACT_MODELS = (FactMaterialShipment, FactNonCostedMaterial, FactTrucking)


async def hydrate(ctx: SyncContext, raw: dict) -> MaterialShipment:
    if not raw.get("noJobsiteMaterial"):
        await populate(ctx, raw, "jobsiteMaterial", JOBSITE_MATERIALS)
        jobsite_material = raw.get("jobsiteMaterial")
        if isinstance(jobsite_material, dict):
            await populate(ctx, jobsite_material, "material", MATERIALS)
            await populate(ctx, jobsite_material, "supplier", COMPANIES)
    return parse_document(MaterialShipment, raw)


def validate(shipment: MaterialShipment) -> bool:
    if shipment.no_jobsite_material:
        return True
    jobsite_material = shipment.jobsite_material
    if not isinstance(jobsite_material, JobsiteMaterial) or not jobsite_material.is_populated:
        logger.warning(
            f"Material shipment {shipment.id} missing jobsite material, material or supplier"
        )
        return False
    return True


async def write(
    session: AsyncSession, scope: ReportScope, shipment: MaterialShipment
) -> list[str]:
    return await upsert_fact_material_shipment(session, scope, shipment)


async def load(ctx: SyncContext, shipment: MaterialShipment) -> Counter:
    scope = await resolve_parent_scope(ctx, "materialShipment", shipment.id)
    if scope is None:
        return Counter()
    return Counter(await write(ctx.session, scope, shipment))


async def delete(ctx: SyncContext, natural_id: str) -> None:
    for model in SHIPMENT_FACT_MODELS:
        await archive_by_natural_key(ctx.session, model, natural_id)


FAMILY = ChildFamily(
    attr="material_shipment",
    source_field="materialShipment",
    collection=MATERIAL_SHIPMENTS,
    hydrate=hydrate,
    validate=validate,
    write=write,
    models=SHIPMENT_FACT_MODELS,
)

SYNC = EntitySync(
    entity="material_shipment",
    collection=MATERIAL_SHIPMENTS,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
