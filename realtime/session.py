"""One live event stream to one client.

Lifecycle: CONNECTING -> OPEN -> CLOSING -> CLOSED.

While open, two independent tasks feed an in-process outbox that
``events()`` streams to the client:

- heartbeat: a keep-alive comment every ``heartbeat_interval`` plus a
  refresh of the connection metadata so its TTL never lapses while alive
- drain: waits for a wakeup (or ``drain_interval``), drains the connection's
  queue in order and re-sends typing snapshots for the user's forums

The session ends on client disconnect, a delivery error, a crashed task or
when ``max_lifetime`` elapses (checked cooperatively between frames).
"""
import asyncio
import enum
import json
import time
import uuid
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from redis.exceptions import RedisError

from backend import RedisBackend
from constants import DRAIN_INTERVAL_SECONDS, HEARTBEAT_INTERVAL_SECONDS, MAX_SESSION_SECONDS
from logging_config import get_logger
from realtime.event_queue import EventQueue
from realtime.notifier import DrainNotifier
from realtime.presence import PresenceResolver, TypingIndicators
from realtime.registry import ConnectionRegistry
from redis_keys import REDIS_USER_FORUMS_KEY, REDIS_USER_KEY
from schemas.base import utc_now_iso
from schemas.events import ConnectedEvent, ConnectedUser, TypingUpdateEvent

logger = get_logger(__name__)

# Longest the stream loop sleeps before re-checking lifetime and disconnect
STREAM_TICK_SECONDS = 1.0


class RealtimeError(Exception):
    pass


class UnknownUserError(RealtimeError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def format_event(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


class ConnectionSession:
    def __init__(
        self,
        backend: RedisBackend,
        registry: ConnectionRegistry,
        queue: EventQueue,
        presence: PresenceResolver,
        typing: TypingIndicators,
        notifier: DrainNotifier,
        user_id: str,
        user_agent: Optional[str] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        drain_interval: float = DRAIN_INTERVAL_SECONDS,
        max_lifetime: float = MAX_SESSION_SECONDS,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.backend = backend
        self.registry = registry
        self.queue = queue
        self.presence = presence
        self.typing = typing
        self.notifier = notifier
        self.user_id = user_id
        self.user_agent = user_agent or "unknown"
        self.heartbeat_interval = heartbeat_interval
        self.drain_interval = drain_interval
        self.max_lifetime = max_lifetime
        self.is_disconnected = is_disconnected

        self.state = SessionState.CONNECTING
        self.connection_id: Optional[str] = None
        self.close_reason: Optional[str] = None
        self._opened_at: Optional[float] = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        # Format: {forum_id: typing_users} as last sent on this connection
        self._typing_sent: Dict[str, Dict[str, str]] = {}

    async def open(self) -> ConnectedEvent:
        """Validate the user and register the connection.

        Raises ``UnknownUserError`` before anything is allocated or written.
        """
        if self.state is not SessionState.CONNECTING:
            raise RealtimeError(f"Session already {self.state.value}")

        user = await self.backend.get_record(REDIS_USER_KEY.format(user_id=self.user_id))
        if not user:
            logger.info(f"Stream rejected: user {self.user_id} not found")
            raise UnknownUserError(self.user_id)

        self.connection_id = uuid.uuid4().hex
        await self.registry.register(self.connection_id, self.user_id, {"user_agent": self.user_agent})
        self.notifier.subscribe(self.connection_id)
        try:
            await self.presence.mark_online(self.user_id)
        except RedisError as e:
            logger.error(f"Could not mark user {self.user_id} online: {e}", exc_info=True)

        self.state = SessionState.OPEN
        self._opened_at = time.monotonic()
        logger.info(f"Connection {self.connection_id} opened for user {self.user_id}")
        return ConnectedEvent(
            connection_id=self.connection_id,
            user=ConnectedUser(id=self.user_id, display_name=user.get("display_name", "")),
        )

    @property
    def expired(self) -> bool:
        return self._opened_at is not None and time.monotonic() - self._opened_at >= self.max_lifetime

    async def events(self, connected: Optional[ConnectedEvent] = None) -> AsyncIterator[str]:
        """Yield SSE frames until the session closes, cleaning up on exit."""
        if connected is None:
            connected = await self.open()
        try:
            yield f"data: {connected.encode()}\n\n"
            self._start_tasks()
            while self.state is SessionState.OPEN:
                if self.expired:
                    self.close_reason = "timeout"
                    logger.info(f"Connection {self.connection_id} reached its maximum lifetime")
                    break
                if self.is_disconnected is not None and await self.is_disconnected():
                    self.close_reason = "disconnect"
                    break
                remaining = self.max_lifetime - (time.monotonic() - self._opened_at)
                try:
                    frame = await asyncio.wait_for(
                        self._outbox.get(), timeout=max(0.0, min(STREAM_TICK_SECONDS, remaining))
                    )
                except asyncio.TimeoutError:
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            # Shielded so cleanup survives the cancellation of a dropped response
            await asyncio.shield(self.close(self.close_reason or "disconnect"))

    def _start_tasks(self):
        self._tasks = [
            asyncio.create_task(self._heartbeat_loop(), name=f"heartbeat-{self.connection_id}"),
            asyncio.create_task(self._drain_loop(), name=f"drain-{self.connection_id}"),
        ]
        for task in self._tasks:
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{task.get_name()} crashed: {error}", exc_info=error)
            self.close_reason = "error"
            self._outbox.put_nowait(None)

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._outbox.put(format_comment(f"heartbeat {int(time.time() * 1000)}"))
            try:
                if not await self.registry.touch(self.connection_id):
                    logger.warning(f"Metadata of live connection {self.connection_id} expired")
            except RedisError as e:
                logger.error(f"Heartbeat refresh failed for connection {self.connection_id}: {e}")

    async def _drain_loop(self):
        while True:
            await self.notifier.wait(self.connection_id, timeout=self.drain_interval)
            try:
                for event in await self.queue.drain_all(self.connection_id):
                    if "timestamp" not in event:
                        event["timestamp"] = utc_now_iso()
                    await self._outbox.put(format_event(event))
                await self._send_typing_snapshots()
            except RedisError as e:
                logger.error(f"Drain failed for connection {self.connection_id}: {e}")

    async def _send_typing_snapshots(self):
        forum_ids = await self.backend.set_members(REDIS_USER_FORUMS_KEY.format(user_id=self.user_id))
        for forum_id in forum_ids:
            typing_users = await self.typing.snapshot(forum_id, exclude_user_id=self.user_id)
            # Only changes are sent, including the transition back to nobody typing
            if typing_users == self._typing_sent.get(forum_id, {}):
                continue
            self._typing_sent[forum_id] = typing_users
            snapshot = TypingUpdateEvent(room_id=forum_id, typing_users=typing_users)
            await self._outbox.put(f"data: {snapshot.encode()}\n\n")
        for forum_id in set(self._typing_sent) - set(forum_ids):
            del self._typing_sent[forum_id]

    async def close(self, reason: str = "disconnect"):
        """Stop both loops, deregister and recompute presence. Idempotent."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        if self.state is SessionState.CONNECTING:
            self.state = SessionState.CLOSED
            return
        self.state = SessionState.CLOSING
        self.close_reason = self.close_reason or reason

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.notifier.unsubscribe(self.connection_id)

        try:
            await self.registry.deregister(self.connection_id)
            await self.presence.on_disconnect(self.user_id)
        except RedisError as e:
            # The sweeper removes whatever is left once the metadata expires
            logger.error(f"Cleanup of connection {self.connection_id} failed: {e}", exc_info=True)
        finally:
            self.state = SessionState.CLOSED
            logger.info(f"Connection {self.connection_id} closed ({self.close_reason}) for user {self.user_id}")
