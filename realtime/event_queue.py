"""Per-connection outbox of events awaiting delivery.

Producers append, the owning session drains. Append order is delivery order.
"""
import json
from typing import Union

from backend import RedisBackend
from constants import QUEUE_TTL_SECONDS
from logging_config import get_logger
from redis_keys import REDIS_QUEUE_KEY
from schemas.events import Event

logger = get_logger(__name__)


class EventQueue:
    def __init__(self, backend: RedisBackend, ttl: int = QUEUE_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    async def enqueue(self, connection_id: str, event: Union[Event, dict]) -> int:
        payload = event.encode() if isinstance(event, Event) else json.dumps(event)
        key = REDIS_QUEUE_KEY.format(connection_id=connection_id)
        # TTL is refreshed on every append so an abandoned backlog eventually expires
        return await self.backend.list_push(key, payload, ttl=self.ttl)

    async def drain_all(self, connection_id: str) -> list[dict]:
        """Return every pending event in enqueue order and clear the queue."""
        raw_events = await self.backend.list_drain(REDIS_QUEUE_KEY.format(connection_id=connection_id))
        events = []
        for raw in raw_events:
            try:
                events.append(json.loads(raw))
            except json.JSONDecodeError as e:
                logger.error(f"Dropping undecodable event for connection {connection_id}: {e}")
        if events:
            logger.debug(f"Drained {len(events)} events for connection {connection_id}")
        return events

    async def pending(self, connection_id: str) -> int:
        return await self.backend.list_length(REDIS_QUEUE_KEY.format(connection_id=connection_id))
