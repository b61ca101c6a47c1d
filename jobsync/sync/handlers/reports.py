"""Daily report hydration and the child-family descriptor shared by report children."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.source.documents import DailyReport
from jobsync.source.store import CREWS, DAILY_REPORTS, JOBSITES
from jobsync.sync.dimensions import upsert_report_dimensions
from jobsync.sync.handlers.base import SyncContext, parse_document, populate
from jobsync.sync.types import ReportScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChildFamily:
    """One child-id list on a daily report and how its entries become facts.

    ``source_field`` is the list's name on the source document (used to
    find a child's parent report); ``attr`` is the same list on the model.
    """

    attr: str
    source_field: str
    collection: str
    hydrate: Callable[[SyncContext, dict], Awaitable[Any]]
    validate: Callable[[Any], bool]
    write: Callable[[AsyncSession, ReportScope, Any], Awaitable[list[str]]]
    models: tuple[type, ...]


async def hydrate_report(ctx: SyncContext, raw: dict) -> DailyReport:
    await populate(ctx, raw, "jobsite", JOBSITES)
    await populate(ctx, raw, "crew", CREWS)
    return parse_document(DailyReport, raw)


async def resolve_parent_scope(
    ctx: SyncContext, source_field: str, child_id: str
) -> Optional[ReportScope]:
    """Upsert the dimensions of the report listing ``child_id``.

    Returns None (after logging) when no report lists the child yet, or the
    report is missing its jobsite or crew. The report's own event will
    sync the child once the source settles.
    """
    raw = await ctx.store.find_parent(DAILY_REPORTS, source_field, child_id)
    if raw is None:
        logger.warning(f"No parent daily report found for {source_field} {child_id}")
        return None

    report = await hydrate_report(ctx, raw)
    if not report.has_relations:
        logger.warning(f"Parent daily report {report.id} missing jobsite or crew")
        return None
    if report.archived:
        logger.info(f"Parent daily report {report.id} is archived; {child_id} not loaded")
        return None
    return await upsert_report_dimensions(ctx.session, report)
