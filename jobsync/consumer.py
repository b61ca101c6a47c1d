"""Long-running consumer: drains the sync queues and dispatches to handlers.

``process_message`` is the only place that acknowledges or rejects. A
handler outcome of DONE, DELETED or SKIPPED is acknowledged; any raised
failure is rejected without requeue and left to the backfill job.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage

from jobsync.core.errors import MalformedMessage, classify_failure
from jobsync.db.connection import Database
from jobsync.messaging.broker import BrokerClient
from jobsync.messaging.topology import QUEUES, SyncMessage, parse_routing_key
from jobsync.source.store import DocumentStore
from jobsync.sync.handlers import SyncContext, get_entity_sync, handle
from jobsync.sync.types import SyncResult

logger = structlog.get_logger(__name__)


class Dispatcher:
    """Routes a decoded message to its entity handler inside one transaction."""

    def __init__(self, database: Database, store: DocumentStore):
        self.database = database
        self.store = store

    async def dispatch(self, message: SyncMessage, routing_key: str) -> Optional[SyncResult]:
        entity, action = parse_routing_key(routing_key)
        if action != message.action.value:
            raise MalformedMessage(
                f"Routing key '{routing_key}' disagrees with body action '{message.action.value}'"
            )
        sync = get_entity_sync(entity)
        if sync is None:
            logger.warning("sync.unknown_entity", entity=entity)
            return None

        async with self.database.session() as session:
            return await handle(
                sync, SyncContext(store=self.store, session=session),
                message.natural_id, message.action,
            )


async def process_message(dispatcher: Dispatcher, message: AbstractIncomingMessage) -> bool:
    """Handle one delivery and settle it. Returns True when acknowledged."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(routing_key=message.routing_key)

    try:
        sync_message = SyncMessage.decode(message.body)
        await dispatcher.dispatch(sync_message, message.routing_key or "")
    except MalformedMessage as e:
        logger.error("message.malformed", error=str(e))
        await message.reject(requeue=False)
        return False
    except Exception as e:
        logger.error("message.rejected", failure=classify_failure(e), error=str(e))
        await message.reject(requeue=False)
        return False

    await message.ack()
    return True


class Consumer:
    """Consumes every sync queue, one channel per queue."""

    def __init__(self, broker: BrokerClient, dispatcher: Dispatcher, prefetch: int = 10):
        self.broker = broker
        self.dispatcher = dispatcher
        self.prefetch = prefetch
        self._channels: list[AbstractChannel] = []

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        await process_message(self.dispatcher, message)

    async def start(self) -> None:
        await self.broker.declare_topology()
        for spec in QUEUES:
            channel = await self.broker.channel(prefetch=self.prefetch)
            queue = await channel.declare_queue(spec.name, durable=True)
            await queue.consume(self._on_message, no_ack=False)
            self._channels.append(channel)
            logger.info("consumer.listening", queue=spec.name, prefetch=self.prefetch)

    async def stop(self) -> None:
        for channel in self._channels:
            if not channel.is_closed:
                await channel.close()
        self._channels.clear()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume until ``stop_event`` is set, then close channels."""
        await self.start()
        logger.info("consumer.ready", queues=len(QUEUES))
        try:
            await stop_event.wait()
        finally:
            await self.stop()
            logger.info("consumer.stopped")
