"""Forum endpoint tests, including the events they fan out."""

import pytest


async def create_user(client, name):
    return (await client.post("/api/auth", json={"displayName": name})).json()["id"]


@pytest.mark.asyncio
async def test_create_forum_broadcasts_to_everyone(client, app):
    host = await create_user(client, "host")
    hub = app.state.hub
    await hub.registry.register("c1", "someone-else")

    resp = await client.post("/api/forums", json={"title": "  Rust  ", "topic": "tech", "hostId": host})
    assert resp.status_code == 201
    forum = resp.json()
    assert forum["title"] == "Rust"
    assert forum["host"] == "host"
    assert forum["participants"] == 0

    [event] = await hub.queue.drain_all("c1")
    assert event["type"] == "forum_created"
    assert event["forum"]["id"] == forum["id"]
    assert event["forum"]["hostId"] == host


@pytest.mark.asyncio
async def test_create_forum_validation(client):
    assert (await client.post("/api/forums", json={"title": " ", "hostId": "x"})).status_code == 400
    assert (await client.post("/api/forums", json={"title": "t"})).status_code == 400
    assert (await client.post("/api/forums", json={"title": "t", "hostId": "missing"})).status_code == 404


@pytest.mark.asyncio
async def test_join_broadcasts_once_to_room(client, app):
    host = await create_user(client, "host")
    guest = await create_user(client, "guest")
    hub = app.state.hub
    forum_id = (await client.post("/api/forums", json={"title": "Go", "hostId": host})).json()["id"]
    await client.post(f"/api/forums/{forum_id}/join", json={"userId": host})
    await hub.registry.register("c-host", host)

    resp = await client.post(f"/api/forums/{forum_id}/join", json={"userId": guest})
    assert resp.status_code == 200
    assert resp.json()["participants"] == 2
    assert resp.json()["isActive"] is True

    # Joining again is not a new membership
    await client.post(f"/api/forums/{forum_id}/join", json={"userId": guest})

    events = await hub.queue.drain_all("c-host")
    assert [e["type"] for e in events] == ["user_joined"]
    assert events[0]["roomId"] == forum_id
    assert events[0]["userId"] == guest
    assert events[0]["userName"] == "guest"
    assert events[0]["participants"] == 2


@pytest.mark.asyncio
async def test_join_errors(client):
    user = await create_user(client, "someone")
    assert (await client.post("/api/forums/nope/join", json={"userId": user})).status_code == 404
    assert (await client.post("/api/forums/nope/join", json={})).status_code == 400


@pytest.mark.asyncio
async def test_leave_notifies_room_and_leaver(client, app):
    host = await create_user(client, "host")
    guest = await create_user(client, "guest")
    hub = app.state.hub
    forum_id = (await client.post("/api/forums", json={"title": "Zig", "hostId": host})).json()["id"]
    for user in (host, guest):
        await client.post(f"/api/forums/{forum_id}/join", json={"userId": user})
    await hub.registry.register("c-host", host)
    await hub.registry.register("c-guest", guest)

    resp = await client.post(f"/api/forums/{forum_id}/leave", json={"userId": guest})
    assert resp.json() == {"success": True, "participants": 1}

    for conn_id in ("c-host", "c-guest"):
        [event] = await hub.queue.drain_all(conn_id)
        assert event["type"] == "user_left"
        assert event["userId"] == guest
        assert event["participants"] == 1


@pytest.mark.asyncio
async def test_list_forums_filters_and_sorts(client):
    host = await create_user(client, "host")
    quiet = (await client.post("/api/forums", json={"title": "Quiet", "topic": "misc", "hostId": host})).json()["id"]
    busy = (await client.post("/api/forums", json={"title": "Busy", "topic": "tech", "hostId": host})).json()["id"]
    await client.post(f"/api/forums/{busy}/join", json={"userId": host})

    forums = (await client.get("/api/forums")).json()
    assert [f["id"] for f in forums] == [busy, quiet]

    assert [f["id"] for f in (await client.get("/api/forums", params={"topic": "misc"})).json()] == [quiet]
    assert [f["id"] for f in (await client.get("/api/forums", params={"search": "bus"})).json()] == [busy]
    assert [f["id"] for f in (await client.get("/api/forums", params={"trending": "true"})).json()] == [busy]
