"""Employee work entries -> fact_employee_work."""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import FactEmployeeWork
from jobsync.source.documents import Employee, EmployeeWork
from jobsync.source.store import EMPLOYEE_WORK, EMPLOYEES
from jobsync.sync.archival import archive_by_natural_key
from jobsync.sync.facts import upsert_fact_employee_work
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document, populate
from jobsync.sync.handlers.reports import ChildFamily, resolve_parent_scope
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)


async def hydrate(ctx: SyncContext, raw: dict) -> EmployeeWork:
    await populate(ctx, raw, "employee", EMPLOYEES)
    return parse_document(EmployeeWork, raw)


def validate(work: EmployeeWork) -> bool:
    if not isinstance(work.employee, Employee):
        logger.warning(f"Employee work {work.id} missing employee reference")
        return False
    return True


async def write(session: AsyncSession, scope: ReportScope, work: EmployeeWork) -> list[str]:
    await upsert_fact_employee_work(session, scope, work)
    return [FactEmployeeWork.__tablename__]


async def load(ctx: SyncContext, work: EmployeeWork) -> Counter:
    scope = await resolve_parent_scope(ctx, "employeeWork", work.id)
    if scope is None:
        return Counter()
    return Counter(await write(ctx.session, scope, work))


async def delete(ctx: SyncContext, natural_id: str) -> None:
    await archive_by_natural_key(ctx.session, FactEmployeeWork, natural_id)


FAMILY = ChildFamily(
    attr="employee_work",
    source_field="employeeWork",
    collection=EMPLOYEE_WORK,
    hydrate=hydrate,
    validate=validate,
    write=write,
    models=(FactEmployeeWork,),
)

SYNC = EntitySync(
    entity="employee_work",
    collection=EMPLOYEE_WORK,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
