"""Fan a domain event out to the queues of live connections.

Delivery is all-settled: a failure queueing on one connection never stops
delivery to the others, and the failing connection is deregistered instead
of being retried. Store failures are logged and swallowed here; the request
that produced the event has already committed its own state.
"""
import asyncio
from typing import Iterable

from redis.exceptions import RedisError

from backend import RedisBackend
from logging_config import get_logger
from realtime.event_queue import EventQueue
from realtime.notifier import DrainNotifier
from realtime.registry import ConnectionRegistry
from redis_keys import REDIS_PARTICIPANTS_KEY
from schemas.events import Event

logger = get_logger(__name__)


class Broadcaster:
    def __init__(
        self,
        backend: RedisBackend,
        registry: ConnectionRegistry,
        queue: EventQueue,
        notifier: DrainNotifier,
    ):
        self.backend = backend
        self.registry = registry
        self.queue = queue
        self.notifier = notifier

    async def broadcast_to_all(self, event: Event) -> int:
        """Queue ``event`` on every connection registered right now (global events)."""
        try:
            connection_ids = await self.registry.live_connections()
        except RedisError as e:
            logger.error(f"Broadcast of {event.type} failed, could not list connections: {e}", exc_info=True)
            return 0
        return await self._deliver(connection_ids, event)

    async def broadcast_to_room(self, room_id: str, event: Event) -> int:
        """Queue ``event`` on the connections of the forum's participants.

        Filtering happens here rather than on the client. Live ids that have
        lost their metadata are dropped from the registry along the way.
        """
        try:
            participants = await self.backend.set_members(REDIS_PARTICIPANTS_KEY.format(forum_id=room_id))
            owners = await self.registry.connection_owners()
        except RedisError as e:
            logger.error(f"Broadcast of {event.type} to room {room_id} failed: {e}", exc_info=True)
            return 0

        stale = [conn_id for conn_id, owner in owners.items() if owner is None]
        targets = [conn_id for conn_id, owner in owners.items() if owner in participants]
        if stale:
            await self._drop(stale)
        logger.debug(f"Room {room_id} has {len(participants)} participants on {len(targets)} connections")
        return await self._deliver(targets, event)

    async def broadcast_to_user(self, user_id: str, event: Event) -> int:
        """Queue ``event`` only on the connections owned by ``user_id``."""
        try:
            connection_ids = await self.registry.connections_for_user(user_id)
        except RedisError as e:
            logger.error(f"Broadcast of {event.type} to user {user_id} failed: {e}", exc_info=True)
            return 0
        return await self._deliver(connection_ids, event)

    async def _deliver(self, connection_ids: Iterable[str], event: Event) -> int:
        connection_ids = list(connection_ids)
        if not connection_ids:
            logger.debug(f"No live connections for {event.type} event")
            return 0

        results = await asyncio.gather(
            *(self.queue.enqueue(conn_id, event) for conn_id in connection_ids),
            return_exceptions=True,
        )

        delivered = []
        failed = []
        for conn_id, result in zip(connection_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to queue {event.type} for connection {conn_id}: {result}")
                failed.append(conn_id)
            else:
                delivered.append(conn_id)

        if failed:
            await self._drop(failed)
        await self.notifier.notify(delivered)
        logger.debug(f"Queued {event.type} on {len(delivered)}/{len(connection_ids)} connections")
        return len(delivered)

    async def _drop(self, connection_ids: list[str]):
        results = await asyncio.gather(
            *(self.registry.deregister(conn_id) for conn_id in connection_ids),
            return_exceptions=True,
        )
        for conn_id, result in zip(connection_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Could not deregister unreachable connection {conn_id}: {result}")
