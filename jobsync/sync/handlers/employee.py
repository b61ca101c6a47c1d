"""Employee events -> dim_employee and its rate history.

Rates are live: after the history is replaced, active work facts for the
employee are repriced from it.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from sqlalchemy import func, select, update

from jobsync.db.models import DimEmployee, DimEmployeeRate, FactEmployeeWork
from jobsync.source.documents import Employee
from jobsync.source.store import EMPLOYEES
from jobsync.sync.archival import archive_by_natural_key, cascade_archive
from jobsync.sync.dimensions import find_dimension_id, upsert_dim_employee
from jobsync.sync.handlers.base import EntitySync, SyncContext, parse_document

logger = logging.getLogger(__name__)


async def hydrate(ctx: SyncContext, raw: dict) -> Employee:
    return parse_document(Employee, raw)


def validate(employee: Employee) -> bool:
    return True


async def load(ctx: SyncContext, employee: Employee) -> Counter:
    employee_id = await upsert_dim_employee(ctx.session, employee)

    current_rate = (
        select(DimEmployeeRate.rate)
        .where(
            DimEmployeeRate.employee_id == FactEmployeeWork.employee_id,
            DimEmployeeRate.effective_date <= FactEmployeeWork.work_date,
        )
        .order_by(DimEmployeeRate.effective_date.desc())
        .limit(1)
        .correlate(FactEmployeeWork)
        .scalar_subquery()
    )
    result = await ctx.session.execute(
        update(FactEmployeeWork)
        .where(
            FactEmployeeWork.employee_id == employee_id,
            FactEmployeeWork.archived_at.is_(None),
        )
        .values(hourly_rate=func.coalesce(current_rate, 0), synced_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return Counter({FactEmployeeWork.__tablename__: result.rowcount or 0})


async def delete(ctx: SyncContext, natural_id: str) -> None:
    employee_id = await find_dimension_id(ctx.session, DimEmployee, natural_id)
    if employee_id is None:
        return
    await archive_by_natural_key(ctx.session, DimEmployee, natural_id)
    await cascade_archive(ctx.session, (FactEmployeeWork,), "employee_id", employee_id)


SYNC = EntitySync(
    entity="employee",
    collection=EMPLOYEES,
    hydrate=hydrate,
    validate=validate,
    load=load,
    delete=delete,
)
