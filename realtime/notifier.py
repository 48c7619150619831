"""Wakeups that let a drain cycle suspend until its queue has work.

Sessions in this process wait on a per-connection ``asyncio.Event`` with the
drain interval as timeout. Broadcasters set the events of local connections
directly and publish the connection ids on ``sse:wakeup`` so that sessions
living in other server processes are woken by their own listener.
"""
import asyncio
import json
from typing import Dict, Iterable, Optional

from redis.exceptions import RedisError

from backend import RedisBackend
from logging_config import get_logger
from redis_keys import REDIS_WAKEUP_CHANNEL

logger = get_logger(__name__)


class DrainNotifier:
    def __init__(self, backend: Optional[RedisBackend] = None):
        self.backend = backend
        # Format: {connection_id: event}
        self._events: Dict[str, asyncio.Event] = {}

    def subscribe(self, connection_id: str) -> asyncio.Event:
        return self._events.setdefault(connection_id, asyncio.Event())

    def unsubscribe(self, connection_id: str):
        self._events.pop(connection_id, None)

    def wake(self, connection_ids: Iterable[str]) -> int:
        woken = 0
        for connection_id in connection_ids:
            event = self._events.get(connection_id)
            if event is not None:
                event.set()
                woken += 1
        return woken

    async def notify(self, connection_ids: Iterable[str]):
        """Wake local sessions and tell other processes about the rest."""
        connection_ids = list(connection_ids)
        if not connection_ids:
            return
        self.wake(connection_ids)
        if self.backend is None:
            return
        try:
            await self.backend.publish(REDIS_WAKEUP_CHANNEL, connection_ids)
        except RedisError as e:
            # Remote sessions still drain on their own interval
            logger.warning(f"Could not publish drain wakeup: {e}")

    async def wait(self, connection_id: str, timeout: float) -> bool:
        """Suspend until woken or ``timeout`` elapses; True if woken."""
        event = self.subscribe(connection_id)
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
            woken = True
        except asyncio.TimeoutError:
            woken = False
        # Cleared before the caller drains so a wakeup during the drain is not lost
        event.clear()
        return woken

    async def listen(self):
        """Background task relaying wakeups published by other processes."""
        if self.backend is None:
            return
        logger.info(f"Starting drain wakeup listener on {REDIS_WAKEUP_CHANNEL}")
        pubsub = None
        try:
            pubsub = await self.backend.subscribe(REDIS_WAKEUP_CHANNEL)
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                try:
                    connection_ids = json.loads(message["data"])
                except (json.JSONDecodeError, TypeError) as e:
                    logger.error(f"Error parsing wakeup message: {e}")
                    continue
                self.wake(connection_ids)
        except asyncio.CancelledError:
            logger.info("Drain wakeup listener cancelled")
            raise
        except RedisError as e:
            logger.error(f"Drain wakeup listener stopped: {e}", exc_info=True)
        finally:
            if pubsub is not None:
                try:
                    await pubsub.aclose()
                except RedisError as e:
                    logger.error(f"Error closing wakeup pub/sub: {e}")
