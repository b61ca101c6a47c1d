"""Crew events -> dim_crew, plus the crew type denormalised onto report facts."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from sqlalchemy import update

from jobsync.db.models import REPORT_FACT_MODELS, DimCrew, DimDailyReport
from jobsync.source.documents import Crew
from jobsync.source.store import CREWS
from jobsync.sync.archival import archive_by_natural_key, cascade_archive
from jobsync.sync.dimensions import find_dimension_id, upsert_dim_crew
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document

logger = logging.getLogger(__name__)


async def hydrate(ctx: SyncContext, raw: dict) -> Crew:
    return parse_document(Crew, raw)


def validate(crew: Crew) -> bool:
    return True


async def load(ctx: SyncContext, crew: Crew) -> Counter:
    crew_id = await upsert_dim_crew(ctx.session, crew)

    refreshed: Counter = Counter()
    now = datetime.utcnow()
    for model in REPORT_FACT_MODELS:
        result = await ctx.session.execute(
            update(model)
            .where(model.crew_id == crew_id, model.crew_type != crew.type)
            .values(crew_type=crew.type, synced_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            refreshed[model.__tablename__] = result.rowcount
    return refreshed


async def delete(ctx: SyncContext, natural_id: str) -> None:
    crew_id = await find_dimension_id(ctx.session, DimCrew, natural_id)
    if crew_id is None:
        return
    await archive_by_natural_key(ctx.session, DimCrew, natural_id)
    archived = await cascade_archive(
        ctx.session, (DimDailyReport, *REPORT_FACT_MODELS), "crew_id", crew_id
    )
    logger.info(f"Crew {natural_id} deleted; archived {archived} dependent rows")


SYNC = EntitySync(
    entity="crew",
    collection=CREWS,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
