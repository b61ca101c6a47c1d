"""Uniform sync handler contract.

Each entity registers an ``EntitySync`` of plain functions; ``handle``
drives the per-message state machine for all of them:

    RECEIVED -> deleted  -> DELETE   -> DELETED
    RECEIVED -> FETCH    -> missing  -> SKIPPED
    FETCH    -> VALIDATE -> invalid  -> SKIPPED
    VALIDATE -> LOAD     -> DONE

Any other exception is logged as ``sync.failed`` and re-raised; only the
dispatcher decides acknowledge or reject.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.core.errors import DocumentNotFound, ValidationFailure, classify_failure
from jobsync.source.store import DocumentStore
from jobsync.sync.types import SyncAction, SyncOutcome, SyncResult

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class SyncContext:
    """Per-message collaborators: the shared store and a transaction-scoped session."""

    store: DocumentStore
    session: AsyncSession


HydrateFn = Callable[[SyncContext, dict], Awaitable[Optional[Any]]]
FetchFn = Callable[[SyncContext, str], Awaitable[Optional[Any]]]
ValidateFn = Callable[[Any], bool]
LoadFn = Callable[[SyncContext, Any], Awaitable[Counter]]
DeleteFn = Callable[[SyncContext, str], Awaitable[None]]


@dataclass(frozen=True)
class EntitySync:
    """Functions implementing one entity's sync.

    ``hydrate`` turns a raw source document into a typed, relation-populated
    model; ``fetch`` is ``get`` followed by ``hydrate``. The backfill job
    calls ``hydrate`` on cursor documents so both paths share one transform.
    """

    entity: str
    collection: str
    hydrate: HydrateFn
    validate: ValidateFn
    load: LoadFn
    delete: DeleteFn

    async def fetch(self, ctx: SyncContext, natural_id: str) -> Optional[Any]:
        raw = await ctx.store.get(self.collection, natural_id)
        if raw is None:
            return None
        return await self.hydrate(ctx, raw)


def parse_document(model: type[M], raw: dict) -> M:
    """Validate a raw document into ``model``; malformed source writes are ValidationFailure."""
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ValidationFailure(
            f"{model.__name__} {raw.get('_id')} is malformed: {e.error_count()} invalid field(s)"
        ) from e


async def populate(ctx: SyncContext, raw: dict, field: str, collection: str) -> None:
    """Replace a reference id in ``raw[field]`` with the referenced document, or None."""
    ref = raw.get(field)
    if ref is None or isinstance(ref, dict):
        return
    raw[field] = await ctx.store.get(collection, str(ref))


async def _run(
    sync: EntitySync,
    ctx: SyncContext,
    natural_id: str,
    log: Any,
    load_doc: Callable[[], Awaitable[Optional[Any]]],
) -> SyncResult:
    try:
        doc = await load_doc()
        if doc is None:
            raise DocumentNotFound(sync.entity, natural_id)
        if not sync.validate(doc):
            log.warning("sync.skipped", reason="invalid")
            return SyncResult(SyncOutcome.SKIPPED)
        counts = await sync.load(ctx, doc)
    except DocumentNotFound:
        log.info("sync.skipped", reason="not_found")
        return SyncResult(SyncOutcome.SKIPPED)
    except ValidationFailure as e:
        log.warning("sync.skipped", reason="invalid", detail=str(e))
        return SyncResult(SyncOutcome.SKIPPED)
    except Exception as e:
        log.error("sync.failed", failure=classify_failure(e), error=str(e), exc_info=True)
        raise

    log.info("sync.loaded", facts=dict(counts))
    return SyncResult(SyncOutcome.DONE, counts)


async def handle(
    sync: EntitySync, ctx: SyncContext, natural_id: str, action: SyncAction
) -> SyncResult:
    """Apply one change event for ``natural_id`` by re-reading current source state."""
    log = logger.bind(entity=sync.entity, natural_id=natural_id, action=action.value)
    log.debug("sync.received")

    if action is SyncAction.DELETED:
        try:
            await sync.delete(ctx, natural_id)
        except Exception as e:
            log.error("sync.failed", failure=classify_failure(e), error=str(e), exc_info=True)
            raise
        log.info("sync.deleted")
        return SyncResult(SyncOutcome.DELETED)

    return await _run(sync, ctx, natural_id, log, lambda: sync.fetch(ctx, natural_id))


async def sync_document(sync: EntitySync, ctx: SyncContext, raw: dict) -> SyncResult:
    """Hydrate, validate and load an already-read source document."""
    natural_id = str(raw["_id"])
    log = logger.bind(entity=sync.entity, natural_id=natural_id, action="backfill")
    log.debug("sync.received")
    return await _run(sync, ctx, natural_id, log, lambda: sync.hydrate(ctx, raw))
