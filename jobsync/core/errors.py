"""Failure taxonomy for the sync engine.

NotFound and ValidationFailure are acknowledged outcomes; everything else
propagates to the dispatcher, which rejects without requeue.
"""

from __future__ import annotations

from aio_pika.exceptions import AMQPConnectionError
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class SyncError(Exception):
    """Base class for sync engine errors."""


class DocumentNotFound(SyncError):
    """Referenced source document is absent at processing time."""

    def __init__(self, entity: str, natural_id: str):
        super().__init__(f"{entity} {natural_id} not found in source store")
        self.entity = entity
        self.natural_id = natural_id


class ValidationFailure(SyncError):
    """Fetched document is missing a required relation."""


class TransientInfraFailure(SyncError):
    """Broker or store connectivity failure."""


class MalformedMessage(SyncError):
    """Message body cannot be decoded into the sync message schema."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientInfraFailure,
    AMQPConnectionError,
    ConnectionFailure,
    ServerSelectionTimeoutError,
    OperationalError,
    InterfaceError,
    ConnectionError,
    TimeoutError,
)


def classify_failure(exc: BaseException) -> str:
    """Label an exception for logging: ``transient`` or ``programming``."""
    if isinstance(exc, _TRANSIENT_TYPES):
        return "transient"
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return "transient"
    return "programming"
