"""Event stream endpoint tests.

Streaming itself is covered in test_session.py; the ASGI test transport reads
whole response bodies, so only pre-stream rejections go through the client and
the response object is driven by hand.
"""

import asyncio

import pytest

from realtime.session import SessionState
from routers.stream import SessionStreamingResponse


@pytest.mark.asyncio
async def test_stream_requires_user_id(client, app):
    resp = await client.get("/api/sse")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User ID is required"
    assert await app.state.hub.registry.live_connections() == set()


@pytest.mark.asyncio
async def test_stream_rejects_unknown_user(client, app):
    resp = await client.get("/api/sse", params={"userId": "ghost"})
    assert resp.status_code == 404
    assert await app.state.hub.registry.live_connections() == set()


@pytest.mark.asyncio
async def test_session_is_closed_when_the_response_never_starts(hub, seed):
    alice = await seed.user("alice")
    session = hub.create_session(alice)
    response = SessionStreamingResponse(session, await session.open())
    assert await hub.registry.connections_for_user(alice) == [session.connection_id]

    async def receive():
        await asyncio.Event().wait()

    async def send(message):
        # Client gone before the first byte
        raise OSError("connection reset by peer")

    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}, "method": "GET", "path": "/api/sse", "headers": []}
    with pytest.raises(Exception):
        await response(scope, receive, send)

    assert session.state is SessionState.CLOSED
    assert await hub.registry.live_connections() == set()
    assert await hub.presence.active_users() == set()
