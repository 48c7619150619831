"""Message and typing endpoint tests."""

import pytest

from constants import MESSAGE_HISTORY_LIMIT
from redis_keys import REDIS_FORUM_MESSAGES_KEY, REDIS_USER_LAST_MESSAGE_KEY


@pytest.fixture
def forum_setup(client, app):
    """Create a host and a guest, both participants of one forum."""

    async def setup():
        host = (await client.post("/api/auth", json={"displayName": "host"})).json()["id"]
        guest = (await client.post("/api/auth", json={"displayName": "guest"})).json()["id"]
        forum_id = (await client.post("/api/forums", json={"title": "Chat", "hostId": host})).json()["id"]
        for user in (host, guest):
            await client.post(f"/api/forums/{forum_id}/join", json={"userId": user})
        await app.state.hub.registry.register("c-host", host)
        return host, guest, forum_id

    return setup


@pytest.mark.asyncio
async def test_send_message_stores_and_broadcasts(client, app, forum_setup):
    host, guest, forum_id = await forum_setup()
    hub = app.state.hub
    await hub.typing.start(forum_id, guest, "guest")

    resp = await client.post("/api/messages", json={"forumId": forum_id, "userId": guest, "text": "  hello  "})
    assert resp.status_code == 201
    message = resp.json()
    assert message["text"] == "hello"
    assert message["userName"] == "guest"
    assert message["edited"] is False

    events = await hub.queue.drain_all("c-host")
    assert [e["type"] for e in events] == ["message", "typing"]
    assert events[0]["roomId"] == forum_id
    assert events[0]["message"] == message
    assert events[1]["isTyping"] is False
    assert await hub.typing.snapshot(forum_id) == {}

    listing = (await client.get("/api/messages", params={"forumId": forum_id})).json()
    assert [m["id"] for m in listing["messages"]] == [message["id"]]
    assert listing["total"] == 1
    assert listing["hasMore"] is False

    user = (await client.get("/api/auth", params={"userId": guest})).json()
    assert user["messageCount"] == 1


@pytest.mark.asyncio
async def test_send_message_validation(client, forum_setup):
    host, guest, forum_id = await forum_setup()
    outsider = (await client.post("/api/auth", json={"displayName": "outsider"})).json()["id"]

    assert (await client.post("/api/messages", json={"forumId": forum_id, "userId": guest})).status_code == 400
    assert (await client.post("/api/messages", json={"forumId": forum_id, "userId": guest, "text": "   "})).status_code == 400
    assert (await client.post("/api/messages", json={"forumId": forum_id, "userId": guest, "text": "x" * 1001})).status_code == 400
    assert (await client.post("/api/messages", json={"forumId": forum_id, "userId": "nobody", "text": "hi"})).status_code == 404
    assert (await client.post("/api/messages", json={"forumId": "nowhere", "userId": guest, "text": "hi"})).status_code == 404
    assert (await client.post("/api/messages", json={"forumId": forum_id, "userId": outsider, "text": "hi"})).status_code == 403


@pytest.mark.asyncio
async def test_send_message_is_rate_limited(client, forum_setup):
    host, guest, forum_id = await forum_setup()
    body = {"forumId": forum_id, "userId": guest, "text": "one"}

    assert (await client.post("/api/messages", json=body)).status_code == 201
    assert (await client.post("/api/messages", json=body)).status_code == 429


@pytest.mark.asyncio
async def test_history_is_bounded(client, app, backend, forum_setup):
    host, guest, forum_id = await forum_setup()
    rate_key = REDIS_USER_LAST_MESSAGE_KEY.format(user_id=guest)
    for n in range(MESSAGE_HISTORY_LIMIT + 5):
        await backend.delete(rate_key)
        await client.post("/api/messages", json={"forumId": forum_id, "userId": guest, "text": f"m{n}"})

    assert await backend.list_length(REDIS_FORUM_MESSAGES_KEY.format(forum_id=forum_id)) == MESSAGE_HISTORY_LIMIT
    listing = (await client.get("/api/messages", params={"forumId": forum_id, "limit": 10})).json()
    assert listing["total"] == MESSAGE_HISTORY_LIMIT
    assert listing["hasMore"] is True
    # Newest ten, displayed oldest first
    assert [m["text"] for m in listing["messages"]][-1] == f"m{MESSAGE_HISTORY_LIMIT + 4}"


@pytest.mark.asyncio
async def test_edit_and_delete_own_message(client, app, forum_setup):
    host, guest, forum_id = await forum_setup()
    hub = app.state.hub
    message = (await client.post("/api/messages", json={"forumId": forum_id, "userId": guest, "text": "typo"})).json()
    await hub.queue.drain_all("c-host")

    resp = await client.put("/api/messages", json={"messageId": message["id"], "userId": host, "text": "hijack"})
    assert resp.status_code == 403

    resp = await client.put("/api/messages", json={"messageId": message["id"], "userId": guest, "text": "fixed"})
    assert resp.status_code == 200
    assert resp.json()["edited"] is True
    assert resp.json()["editedAt"]

    resp = await client.request("DELETE", "/api/messages", json={"messageId": message["id"], "userId": guest})
    assert resp.status_code == 200
    assert (await client.put("/api/messages", json={"messageId": message["id"], "userId": guest, "text": "x"})).status_code == 404

    events = await hub.queue.drain_all("c-host")
    assert [e["type"] for e in events] == ["message_edited", "message_deleted"]
    assert events[0]["message"]["text"] == "fixed"
    assert events[1] == {**events[1], "roomId": forum_id, "messageId": message["id"]}

    listing = (await client.get("/api/messages", params={"forumId": forum_id})).json()
    assert listing["messages"] == []


@pytest.mark.asyncio
async def test_typing_start_and_stop(client, app, forum_setup):
    host, guest, forum_id = await forum_setup()
    hub = app.state.hub

    resp = await client.post("/api/messages/typing", json={"forumId": forum_id, "userId": guest})
    assert resp.status_code == 200
    assert await hub.typing.snapshot(forum_id) == {guest: "guest"}

    resp = await client.request("DELETE", "/api/messages/typing", json={"forumId": forum_id, "userId": guest})
    assert resp.status_code == 200
    assert await hub.typing.snapshot(forum_id) == {}

    events = await hub.queue.drain_all("c-host")
    assert [(e["type"], e["isTyping"]) for e in events] == [("typing", True), ("typing", False)]


@pytest.mark.asyncio
async def test_typing_requires_membership(client, forum_setup):
    host, guest, forum_id = await forum_setup()
    outsider = (await client.post("/api/auth", json={"displayName": "outsider"})).json()["id"]

    assert (await client.post("/api/messages/typing", json={"forumId": forum_id})).status_code == 400
    assert (await client.post("/api/messages/typing", json={"forumId": forum_id, "userId": outsider})).status_code == 403
