"""Sync exchange topology and the change-event message contract.

Routing keys are ``{entity}.{action}``. Each entity family has a durable
queue bound by pattern; the daily report queue also binds crew events,
since crew edits change report-scoped dimension data.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from jobsync.core.errors import MalformedMessage
from jobsync.sync.types import SyncAction

ENTITIES = (
    "employee",
    "jobsite",
    "crew",
    "daily_report",
    "employee_work",
    "vehicle_work",
    "material_shipment",
    "production",
    "invoice",
)


@dataclass(frozen=True)
class QueueSpec:
    name: str
    bindings: tuple[str, ...]


QUEUES: tuple[QueueSpec, ...] = (
    QueueSpec("sync.employee", ("employee.*",)),
    QueueSpec("sync.jobsite", ("jobsite.*",)),
    QueueSpec("sync.daily_report", ("daily_report.*", "crew.*")),
    QueueSpec("sync.employee_work", ("employee_work.*",)),
    QueueSpec("sync.vehicle_work", ("vehicle_work.*",)),
    QueueSpec("sync.material_shipment", ("material_shipment.*",)),
    QueueSpec("sync.production", ("production.*",)),
    QueueSpec("sync.invoice", ("invoice.*",)),
)


def routing_key(entity: str, action: SyncAction | str) -> str:
    if entity not in ENTITIES:
        raise ValueError(f"Unknown entity '{entity}'. Expected one of: {', '.join(ENTITIES)}")
    return f"{entity}.{SyncAction(action).value}"


def parse_routing_key(key: str) -> tuple[str, str]:
    """Split ``entity.action``; the entity may itself contain underscores, not dots."""
    entity, _, action = key.rpartition(".")
    if not entity or not action:
        raise MalformedMessage(f"Routing key '{key}' is not of the form entity.action")
    return entity, action


def queue_for(entity: str) -> QueueSpec:
    """The queue whose bindings match events for ``entity``."""
    for spec in QUEUES:
        if f"{entity}.*" in spec.bindings:
            return spec
    raise ValueError(f"No queue binds events for '{entity}'")


class SyncMessage(BaseModel):
    """Change event body: the natural id, never the document itself."""

    model_config = ConfigDict(populate_by_name=True)

    natural_id: str = Field(
        validation_alias=AliasChoices("naturalId", "mongoId", "natural_id"),
        serialization_alias="naturalId",
        min_length=1,
    )
    action: SyncAction
    timestamp: datetime

    @classmethod
    def for_change(cls, action: SyncAction | str, natural_id: str) -> SyncMessage:
        return cls(
            natural_id=natural_id,
            action=SyncAction(action),
            timestamp=datetime.now(timezone.utc),
        )

    def encode(self) -> bytes:
        return json.dumps(self.model_dump(mode="json", by_alias=True)).encode()

    @classmethod
    def decode(cls, body: bytes) -> SyncMessage:
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise MalformedMessage(f"Invalid sync message: {e.error_count()} error(s)") from e
