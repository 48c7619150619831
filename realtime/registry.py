"""Live connection registry.

Every connection id in ``sse:connections`` is expected to have a metadata
hash at ``sse:connection:{id}``. Register writes the hash first and the set
entry second; deregister removes them in the reverse order. Metadata expires after ``CONNECTION_TTL_SECONDS`` so
a crashed session cannot leak forever. A live id whose metadata is gone is
indistinguishable from a dead one and is removed by ``prune_stale``.
"""
from typing import Optional

from backend import RedisBackend
from constants import CONNECTION_TTL_SECONDS
from logging_config import get_logger
from redis_keys import REDIS_CONN_KEY, REDIS_CONNECTIONS_KEY, REDIS_QUEUE_KEY
from schemas.base import utc_now_iso

logger = get_logger(__name__)


class ConnectionRegistry:
    def __init__(self, backend: RedisBackend, ttl: int = CONNECTION_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    async def register(self, connection_id: str, user_id: str, metadata: Optional[dict] = None):
        now = utc_now_iso()
        record = {
            "user_id": user_id,
            "connected_at": now,
            "last_heartbeat": now,
            "user_agent": "unknown",
        }
        record.update(metadata or {})
        # Metadata before membership: a scan must never see a live id without its record
        await self.backend.save_record(REDIS_CONN_KEY.format(connection_id=connection_id), record, ttl=self.ttl)
        await self.backend.set_add(REDIS_CONNECTIONS_KEY, connection_id)
        logger.info(f"Registered connection {connection_id} for user {user_id}")

    async def deregister(self, connection_id: str) -> bool:
        """Remove a connection with its metadata and pending queue. Safe to repeat."""
        removed = await self.backend.set_remove(REDIS_CONNECTIONS_KEY, connection_id)
        await self.backend.delete(
            REDIS_CONN_KEY.format(connection_id=connection_id),
            REDIS_QUEUE_KEY.format(connection_id=connection_id),
        )
        if removed:
            logger.info(f"Deregistered connection {connection_id}")
        else:
            logger.debug(f"Connection {connection_id} was already deregistered")
        return bool(removed)

    async def get(self, connection_id: str) -> Optional[dict]:
        return await self.backend.get_record(REDIS_CONN_KEY.format(connection_id=connection_id))

    async def touch(self, connection_id: str) -> bool:
        """Refresh last_heartbeat and the metadata TTL.

        Returns False when the record has already expired; it is not recreated.
        """
        return await self.backend.update_record(
            REDIS_CONN_KEY.format(connection_id=connection_id),
            {"last_heartbeat": utc_now_iso()},
            ttl=self.ttl,
        )

    async def live_connections(self) -> set[str]:
        return await self.backend.set_members(REDIS_CONNECTIONS_KEY)

    async def connection_owners(self) -> dict[str, Optional[str]]:
        """Map every live connection id to its owning user (None if metadata vanished)."""
        owners = {}
        for connection_id in await self.live_connections():
            record = await self.get(connection_id)
            owners[connection_id] = record.get("user_id") if record else None
        return owners

    async def connections_for_user(self, user_id: str) -> list[str]:
        # Linear in live connections; a user -> connections index would be needed at scale
        owners = await self.connection_owners()
        return sorted(conn_id for conn_id, owner in owners.items() if owner == user_id)

    async def prune_stale(self) -> list[str]:
        """Deregister live ids whose metadata record no longer exists."""
        stale = [conn_id for conn_id, owner in (await self.connection_owners()).items() if owner is None]
        for connection_id in stale:
            await self.deregister(connection_id)
        if stale:
            logger.info(f"Pruned {len(stale)} stale connections: {stale}")
        return stale
