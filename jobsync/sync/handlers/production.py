"""Production entries -> fact_production."""

from __future__ import annotations

from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import FactProduction
from jobsync.source.documents import Production
from jobsync.source.store import PRODUCTIONS
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.facts import upsert_fact_production
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document
from jobsync.sync.handlers.reports import ChildFamily, resolve_parent_scope
from jobsync.sync.types import ReportScope


async def hydrate(ctx: SyncContext, raw: dict) -> Production:
    return parse_document(Production, raw)


def validate(production: Production) -> bool:
    return True


async def write(session: AsyncSession, scope: ReportScope, production: Production) -> list[str]:
    await upsert_fact_production(session, scope, production)
    return [FactProduction.__tablename__]


async def load(ctx: SyncContext, production: Production) -> Counter:
    scope = await resolve_parent_scope(ctx, "production", production.id)
    if scope is None:
        return Counter()
    return Counter(await write(ctx.session, scope, production))


async def delete(ctx: SyncContext, natural_id: str) -> None:
    await archive_by_natural_key(ctx.session, FactProduction, natural_id)


FAMILY = ChildFamily(
    attr="production",
    source_field="production",
    collection=PRODUCTIONS,
    hydrate=hydrate,
    validate=validate,
    write=write,
    models=(FactProduction,),
)

SYNC = EntitySync(
    entity="production",
    collection=PRODUCTIONS,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
