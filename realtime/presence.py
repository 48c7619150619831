"""Online/offline presence and typing indicators.

A user is online iff at least one of their connections is registered. The
``active_users`` set is only an index over that fact; ``reconcile`` repairs
it after races between a disconnect and a concurrent reconnect.
"""
import time
from typing import Optional

from backend import RedisBackend
from constants import TYPING_TTL_SECONDS
from logging_config import get_logger
from realtime.registry import ConnectionRegistry
from redis_keys import REDIS_ACTIVE_USERS_KEY, REDIS_TYPING_KEY, REDIS_USER_KEY
from schemas.base import utc_now_iso

logger = get_logger(__name__)


class PresenceResolver:
    def __init__(self, backend: RedisBackend, registry: ConnectionRegistry):
        self.backend = backend
        self.registry = registry

    async def mark_online(self, user_id: str):
        await self.backend.set_add(REDIS_ACTIVE_USERS_KEY, user_id)
        await self.backend.update_record(
            REDIS_USER_KEY.format(user_id=user_id),
            {"is_online": True, "last_active": utc_now_iso()},
        )
        logger.debug(f"User {user_id} marked online")

    async def mark_offline(self, user_id: str):
        await self.backend.set_remove(REDIS_ACTIVE_USERS_KEY, user_id)
        await self.backend.update_record(
            REDIS_USER_KEY.format(user_id=user_id),
            {"is_online": False, "last_active": utc_now_iso()},
        )
        logger.info(f"User {user_id} is now offline")

    async def on_disconnect(self, user_id: str) -> bool:
        """Recompute presence after one of the user's connections went away.

        Returns whether the user is still online. Not atomic with a concurrent
        connect; ``reconcile`` settles such races later.
        """
        remaining = await self.registry.connections_for_user(user_id)
        if remaining:
            logger.debug(f"User {user_id} still has {len(remaining)} live connections")
            return True
        await self.mark_offline(user_id)
        return False

    async def is_online(self, user_id: str) -> bool:
        return bool(await self.registry.connections_for_user(user_id))

    async def active_users(self) -> set[str]:
        return await self.backend.set_members(REDIS_ACTIVE_USERS_KEY)

    async def reconcile(self) -> dict:
        """Bring the active-users index back in line with the registry."""
        owners = set(owner for owner in (await self.registry.connection_owners()).values() if owner)
        indexed = await self.active_users()
        went_offline = indexed - owners
        came_online = owners - indexed
        for user_id in went_offline:
            await self.mark_offline(user_id)
        for user_id in came_online:
            await self.mark_online(user_id)
        if went_offline or came_online:
            logger.info(f"Presence reconciled: {len(came_online)} online, {len(went_offline)} offline")
        return {"online": came_online, "offline": went_offline}


class TypingIndicators:
    """Per-forum, per-user typing flags that clear themselves after a few seconds.

    Each forum keeps one hash of typing entries, so a snapshot reads a single
    key. Entries carry their own expiry; the hash TTL only reaps idle forums.
    """

    def __init__(self, backend: RedisBackend, ttl: int = TYPING_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    async def start(self, forum_id: str, user_id: str, display_name: str):
        entry = {"display_name": display_name, "expires_at": time.time() + self.ttl}
        await self.backend.save_record(REDIS_TYPING_KEY.format(forum_id=forum_id), {user_id: entry}, ttl=self.ttl)

    async def stop(self, forum_id: str, user_id: str):
        await self.backend.delete_fields(REDIS_TYPING_KEY.format(forum_id=forum_id), user_id)

    async def snapshot(self, forum_id: str, exclude_user_id: Optional[str] = None) -> dict[str, str]:
        key = REDIS_TYPING_KEY.format(forum_id=forum_id)
        entries = await self.backend.get_record(key) or {}
        now = time.time()
        typing_users = {}
        expired = []
        for user_id, entry in entries.items():
            if not isinstance(entry, dict) or entry.get("expires_at", 0) <= now:
                expired.append(user_id)
            elif user_id != exclude_user_id:
                typing_users[user_id] = entry.get("display_name", "")
        if expired:
            await self.backend.delete_fields(key, *expired)
        return typing_users
