"""Test fixtures: an isolated in-memory Redis per test.

Every test gets its own fakeredis server, so no state leaks between tests and
no real Redis is needed. Realtime cadences are shortened so session tests
finish in well under a second.
"""

import uuid

import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer
from httpx import ASGITransport, AsyncClient

from app import attach_realtime, create_app
from backend import RedisBackend
from realtime.hub import RealtimeHub
from redis_keys import REDIS_FORUM_KEY, REDIS_FORUMS_KEY, REDIS_PARTICIPANTS_KEY, REDIS_USER_FORUMS_KEY, REDIS_USER_KEY, REDIS_USERS_KEY
from schemas.base import utc_now_iso

FAST_HUB = {
    "heartbeat_interval": 0.05,
    "drain_interval": 0.01,
    "max_session_seconds": 5,
    "publish_wakeups": False,
}


class Seeder:
    """Writes users, forums and memberships straight into the store."""

    def __init__(self, backend: RedisBackend):
        self.backend = backend

    async def user(self, display_name: str) -> str:
        user_id = uuid.uuid4().hex
        now = utc_now_iso()
        await self.backend.save_record(
            REDIS_USER_KEY.format(user_id=user_id),
            {
                "id": user_id,
                "display_name": display_name,
                "joined_at": now,
                "last_active": now,
                "message_count": 0,
                "forums_created": 0,
                "discussions_joined": [],
                "is_online": False,
            },
        )
        await self.backend.set_add(REDIS_USERS_KEY, user_id)
        return user_id

    async def forum(self, title: str, host_id: str) -> str:
        forum_id = uuid.uuid4().hex
        now = utc_now_iso()
        await self.backend.save_record(
            REDIS_FORUM_KEY.format(forum_id=forum_id),
            {"id": forum_id, "title": title, "topic": "general", "host": "host", "host_id": host_id, "created_at": now, "last_activity": now},
        )
        await self.backend.set_add(REDIS_FORUMS_KEY, forum_id)
        return forum_id

    async def join(self, forum_id: str, user_id: str):
        await self.backend.set_add(REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id), user_id)
        await self.backend.set_add(REDIS_USER_FORUMS_KEY.format(user_id=user_id), forum_id)


@pytest_asyncio.fixture()
async def redis_client():
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture()
async def backend(redis_client):
    return RedisBackend(redis_client)


@pytest_asyncio.fixture()
async def hub(backend):
    return RealtimeHub(backend, **FAST_HUB)


@pytest_asyncio.fixture()
async def seed(backend):
    return Seeder(backend)


@pytest_asyncio.fixture()
async def app(backend):
    """App wired to the in-memory store without running the lifespan."""
    app = create_app()
    attach_realtime(app, backend, FAST_HUB)
    return app


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
