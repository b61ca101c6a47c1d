"""Async access to the operational MongoDB store.

``DocumentStore`` is an explicit client: open it at process start, pass it
to handlers and the backfill job, close it on shutdown. Connectivity
failures surface as ``TransientInfraFailure``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure

from jobsync.config import MongoConfig
from jobsync.core.errors import TransientInfraFailure

logger = logging.getLogger(__name__)

# Collection names used by the source ODM
JOBSITES = "jobsites"
CREWS = "crews"
EMPLOYEES = "employees"
VEHICLES = "vehicles"
MATERIALS = "materials"
COMPANIES = "companies"
JOBSITE_MATERIALS = "jobsitematerials"
DAILY_REPORTS = "dailyreports"
EMPLOYEE_WORK = "employeeworks"
VEHICLE_WORK = "vehicleworks"
MATERIAL_SHIPMENTS = "materialshipments"
PRODUCTIONS = "productions"
INVOICES = "invoices"


def to_object_id(natural_id: Any) -> Any:
    """Source ``_id`` for a natural id; strings that are not ObjectIds pass through."""
    if isinstance(natural_id, str) and ObjectId.is_valid(natural_id):
        return ObjectId(natural_id)
    return natural_id


class DocumentStore:
    """Motor client bound to one database, with an explicit open/close lifecycle."""

    def __init__(self, config: MongoConfig, client: AsyncIOMotorClient | None = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._client is None:
            raise RuntimeError("DocumentStore is not open; call open() first")
        return self._client[self.config.database]

    def open(self) -> DocumentStore:
        if self._client is None:
            self._client = AsyncIOMotorClient(
                self.config.uri,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
            )
            self._owns_client = True
        return self

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
        self._client = None

    async def ping(self) -> None:
        """Round-trip to the server; raises ``TransientInfraFailure`` if unreachable."""
        try:
            await self.db.command("ping")
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Document store unreachable: {e}") from e

    async def get(self, collection: str, natural_id: str) -> dict[str, Any] | None:
        try:
            return await self.db[collection].find_one({"_id": to_object_id(natural_id)})
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Failed reading {collection}/{natural_id}: {e}") from e

    async def get_many(
        self, collection: str, natural_ids: Iterable[str]
    ) -> list[dict[str, Any]]:
        """Fetch documents by id, in the order given. Missing ids are dropped."""
        ids = [str(i) for i in natural_ids]
        if not ids:
            return []
        try:
            cursor = self.db[collection].find(
                {"_id": {"$in": [to_object_id(i) for i in ids]}}
            )
            found = {str(doc["_id"]): doc async for doc in cursor}
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Failed reading {collection}: {e}") from e

        missing = [i for i in ids if i not in found]
        if missing:
            logger.debug("%s: %d referenced documents missing", collection, len(missing))
        return [found[i] for i in ids if i in found]

    async def existing_ids(self, collection: str, natural_ids: Iterable[str]) -> set[str]:
        """Subset of ``natural_ids`` that still have a document in ``collection``."""
        ids = [to_object_id(str(i)) for i in natural_ids]
        if not ids:
            return set()
        try:
            cursor = self.db[collection].find({"_id": {"$in": ids}}, {"_id": 1})
            return {str(doc["_id"]) async for doc in cursor}
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Failed reading {collection}: {e}") from e

    async def find_parent(
        self, collection: str, field: str, child_id: str
    ) -> dict[str, Any] | None:
        """Find the document whose ``field`` (scalar or array) references ``child_id``."""
        try:
            return await self.db[collection].find_one({field: to_object_id(child_id)})
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Failed reading {collection}: {e}") from e

    async def stream(
        self,
        collection: str,
        query: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Iterate a collection through a server-side cursor."""
        cursor = self.db[collection].find(query or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        try:
            async for doc in cursor:
                yield doc
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Cursor over {collection} failed: {e}") from e

    async def count(self, collection: str, query: dict[str, Any] | None = None) -> int:
        try:
            return await self.db[collection].count_documents(query or {})
        except ConnectionFailure as e:
            raise TransientInfraFailure(f"Failed counting {collection}: {e}") from e
