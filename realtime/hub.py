import asyncio
from typing import Optional

from backend import RedisBackend
from constants import (
    DRAIN_INTERVAL_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    MAX_SESSION_SECONDS,
    REGISTRY_SWEEP_SECONDS,
)
from logging_config import get_logger
from realtime.broadcaster import Broadcaster
from realtime.event_queue import EventQueue
from realtime.notifier import DrainNotifier
from realtime.presence import PresenceResolver, TypingIndicators
from realtime.registry import ConnectionRegistry
from realtime.session import ConnectionSession

logger = get_logger(__name__)


class RealtimeHub:
    """Everything the fan-out core needs, built around one shared backend."""

    def __init__(
        self,
        backend: RedisBackend,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        drain_interval: float = DRAIN_INTERVAL_SECONDS,
        max_session_seconds: float = MAX_SESSION_SECONDS,
        publish_wakeups: bool = True,
    ):
        self.backend = backend
        self.heartbeat_interval = heartbeat_interval
        self.drain_interval = drain_interval
        self.max_session_seconds = max_session_seconds

        self.registry = ConnectionRegistry(backend)
        self.queue = EventQueue(backend)
        self.notifier = DrainNotifier(backend if publish_wakeups else None)
        self.broadcaster = Broadcaster(backend, self.registry, self.queue, self.notifier)
        self.presence = PresenceResolver(backend, self.registry)
        self.typing = TypingIndicators(backend)

    def create_session(self, user_id: str, user_agent: Optional[str] = None, is_disconnected=None) -> ConnectionSession:
        return ConnectionSession(
            backend=self.backend,
            registry=self.registry,
            queue=self.queue,
            presence=self.presence,
            typing=self.typing,
            notifier=self.notifier,
            user_id=user_id,
            user_agent=user_agent,
            heartbeat_interval=self.heartbeat_interval,
            drain_interval=self.drain_interval,
            max_lifetime=self.max_session_seconds,
            is_disconnected=is_disconnected,
        )

    async def sweep(self) -> dict:
        """One self-heal pass over the registry and the presence index."""
        pruned = await self.registry.prune_stale()
        presence = await self.presence.reconcile()
        return {"pruned": pruned, **presence}

    async def sweep_forever(self, interval: float = REGISTRY_SWEEP_SECONDS):
        logger.info(f"Starting registry sweeper every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                # One failed pass must not stop the sweeper
                logger.error(f"Registry sweep failed: {e}", exc_info=True)
