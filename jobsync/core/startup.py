"""Process startup: open shared clients and fail fast if they stay unreachable.

Connectivity checks retry with exponential backoff (tenacity); a check
that never succeeds raises ``StartupError``, which the CLI turns into a
non-zero exit.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from jobsync.config import AppConfig
from jobsync.core.errors import classify_failure
from jobsync.db.connection import Database
from jobsync.source.store import DocumentStore

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Raised when a required service cannot be reached at startup."""


async def check_connectivity(
    name: str,
    check: Callable[[], Awaitable[None]],
    attempts: int = 5,
    max_wait: float = 10,
) -> None:
    """Run ``check`` until it succeeds, retrying transient failures only.

    Raises:
        StartupError: If every attempt fails or the failure is not transient
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=max_wait),
        retry=retry_if_exception(lambda e: classify_failure(e) == "transient"),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                await check()
    except Exception as e:
        raise StartupError(f"{name} unavailable: {e}") from e
    logger.info(f"✓ {name} connection OK")


@dataclass
class SyncResources:
    database: Database
    store: DocumentStore


@asynccontextmanager
async def open_sync_resources(config: AppConfig) -> AsyncIterator[SyncResources]:
    """Open the relational pool and document store, verify both, close on exit.

    Usage:
        async with open_sync_resources(config) as resources:
            await BackfillJob(resources.database, resources.store).run()
    """
    database = Database(config.db).open()
    store = DocumentStore(config.mongo).open()
    attempts = config.backfill.connect_attempts
    try:
        await check_connectivity("Reporting database", database.ping, attempts)
        await check_connectivity("Document store", store.ping, attempts)
        yield SyncResources(database=database, store=store)
    finally:
        await store.close()
        await database.close()
