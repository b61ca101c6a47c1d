"""Orphan and cascade archival.

Rows are never physically removed: archival stamps ``archived_at`` (and
``synced_at``) on rows that are still active, so re-running any of these
is a no-op and an existing archive stamp is preserved.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def _archive(session: AsyncSession, model: type, *criteria) -> int:
    now = datetime.utcnow()
    stmt = (
        update(model)
        .where(*criteria, model.archived_at.is_(None))
        .values(archived_at=now, synced_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


async def archive_by_natural_key(session: AsyncSession, model: type, mongo_id: str) -> int:
    """Archive the row of ``model`` keyed by ``mongo_id``."""
    return await _archive(session, model, model.mongo_id == mongo_id)


async def archive_orphaned_facts(
    session: AsyncSession,
    model: type,
    current_ids: Collection[str],
    *,
    owner_column: str = "daily_report_id",
    owner_id: UUID,
) -> int:
    """Archive facts of one owner whose natural key left the owner's child list.

    Args:
        session: Active async session
        model: Fact model
        current_ids: Natural keys currently listed on the source parent
        owner_column: Fact column referencing the parent dimension
        owner_id: Surrogate id of the parent dimension row

    Returns:
        Number of rows newly archived
    """
    criteria = [getattr(model, owner_column) == owner_id]
    if current_ids:
        criteria.append(model.mongo_id.not_in(list(current_ids)))
    archived = await _archive(session, model, *criteria)
    if archived:
        logger.info(
            f"Archived {archived} orphaned {model.__tablename__} rows "
            f"for {owner_column}={owner_id}"
        )
    return archived


async def cascade_archive(
    session: AsyncSession,
    models: Iterable[type],
    column: str,
    dimension_id: UUID,
) -> int:
    """Archive every active row of ``models`` whose ``column`` references a dimension."""
    total = 0
    for model in models:
        total += await _archive(session, model, getattr(model, column) == dimension_id)
    return total
