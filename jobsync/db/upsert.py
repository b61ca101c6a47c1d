"""Atomic natural-key upsert.

One ``INSERT ... ON CONFLICT (mongo_id) DO UPDATE ... RETURNING id`` per row,
so concurrent handlers racing to create the same dimension converge on a
single row instead of both passing an existence check.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import case, func, null
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.db.models import Base

_IMMUTABLE = ("id", "mongo_id")


def _dialect_insert(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Natural-key upsert not supported on {dialect}")


async def upsert_by_natural_key(
    session: AsyncSession,
    model: type[Base],
    mongo_id: str,
    values: dict[str, Any],
    *,
    keep_first_archived: bool = False,
) -> UUID:
    """Insert or update the row keyed by ``mongo_id``; return its surrogate id.

    Args:
        session: Active async session (caller owns the transaction)
        model: Dimension or fact model with a unique ``mongo_id``
        mongo_id: Natural key from the source store
        values: Mutable columns to write
        keep_first_archived: Keep an existing ``archived_at`` stamp when the
            source still reports the row archived (for sources that only
            carry a boolean flag)

    Returns:
        Surrogate id of the inserted or updated row
    """
    row = {"id": uuid4(), "mongo_id": mongo_id, **values, "synced_at": datetime.utcnow()}

    stmt = _dialect_insert(session)(model).values(**row)
    update_set: dict[str, Any] = {
        key: stmt.excluded[key] for key in row if key not in _IMMUTABLE
    }

    if keep_first_archived and "archived_at" in row:
        current = model.__table__.c.archived_at
        update_set["archived_at"] = case(
            (stmt.excluded.archived_at.is_(None), null()),
            else_=func.coalesce(current, stmt.excluded.archived_at),
        )

    stmt = stmt.on_conflict_do_update(
        index_elements=["mongo_id"],
        set_=update_set,
    ).returning(model.__table__.c.id)

    result = await session.execute(stmt)
    return result.scalar_one()
