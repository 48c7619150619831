import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from redis.exceptions import RedisError

from backend import RedisBackend
from dependencies import get_backend, get_hub
from logging_config import get_logger
from realtime.hub import RealtimeHub
from redis_keys import REDIS_FORUM_KEY, REDIS_FORUMS_KEY, REDIS_PARTICIPANTS_KEY, REDIS_USER_FORUMS_KEY, REDIS_USER_KEY
from schemas.base import utc_now_iso
from schemas.events import ForumCreatedEvent, UserJoinedEvent, UserLeftEvent
from schemas.forums import CreateForumRequest, ForumResponse, LeaveForumResponse, MembershipRequest

logger = get_logger(__name__)

forums_router = APIRouter(prefix="/api/forums", tags=["forums"])


async def load_forum(backend: RedisBackend, forum_id: str) -> Optional[ForumResponse]:
    forum = await backend.get_record(REDIS_FORUM_KEY.format(forum_id=forum_id))
    if not forum:
        return None
    participants = await backend.set_size(REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id))
    forum.update(participants=participants, is_active=participants > 0)
    return ForumResponse(**forum)


async def load_user(backend: RedisBackend, user_id: str) -> dict:
    user = await backend.get_record(REDIS_USER_KEY.format(user_id=user_id))
    if not user:
        logger.warning(f"User {user_id} not found")
        raise HTTPException(status_code=404, detail="User not found")
    return user


@forums_router.get("", response_model=list[ForumResponse])
async def list_forums(
    search: Optional[str] = Query(None),
    topic: Optional[str] = Query(None),
    trending: bool = Query(False),
    backend: RedisBackend = Depends(get_backend),
):
    try:
        forums = []
        for forum_id in await backend.set_members(REDIS_FORUMS_KEY):
            forum = await load_forum(backend, forum_id)
            if forum:
                forums.append(forum)
    except RedisError as e:
        logger.error(f"Error listing forums: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch forums")

    if search:
        term = search.lower()
        forums = [f for f in forums if term in f.title.lower() or term in f.topic.lower() or term in f.host.lower()]
    if topic and topic != "all":
        forums = [f for f in forums if f.topic == topic]
    if trending:
        forums = [f for f in forums if f.participants > 0]

    # Most active first, then newest
    forums.sort(key=lambda f: f.created_at, reverse=True)
    forums.sort(key=lambda f: f.participants, reverse=True)
    return forums


@forums_router.post("", response_model=ForumResponse, status_code=201)
async def create_forum(
    body: CreateForumRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    title = (body.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Forum title is required")
    if not body.host_id:
        raise HTTPException(status_code=400, detail="Host ID is required")

    try:
        user = await load_user(backend, body.host_id)
        forum_id = uuid.uuid4().hex
        now = utc_now_iso()
        forum = {
            "id": forum_id,
            "title": title,
            "topic": body.topic or "general",
            "host": user["display_name"],
            "host_id": body.host_id,
            "created_at": now,
            "last_activity": now,
        }
        await backend.save_record(REDIS_FORUM_KEY.format(forum_id=forum_id), forum)
        await backend.set_add(REDIS_FORUMS_KEY, forum_id)
        await backend.increment_field(REDIS_USER_KEY.format(user_id=body.host_id), "forums_created")
    except RedisError as e:
        logger.error(f"Error creating forum: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create forum")

    logger.info(f"Forum {forum_id} created by {body.host_id}: title={title}")
    response = ForumResponse(**forum)
    await hub.broadcaster.broadcast_to_all(ForumCreatedEvent(forum=response.model_dump(by_alias=True)))
    return response


@forums_router.post("/{forum_id}/join", response_model=ForumResponse)
async def join_forum(
    forum_id: str,
    body: MembershipRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not body.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    try:
        forum = await backend.get_record(REDIS_FORUM_KEY.format(forum_id=forum_id))
        if not forum:
            logger.warning(f"Join forum failed: forum {forum_id} not found")
            raise HTTPException(status_code=404, detail="Forum not found")
        user = await load_user(backend, body.user_id)

        participants_key = REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id)
        newly_joined = bool(await backend.set_add(participants_key, body.user_id))
        if newly_joined:
            await backend.set_add(REDIS_USER_FORUMS_KEY.format(user_id=body.user_id), forum_id)
            joined = list(user.get("discussions_joined") or [])
            if forum_id not in joined:
                joined.append(forum_id)
                await backend.update_record(REDIS_USER_KEY.format(user_id=body.user_id), {"discussions_joined": joined})
        await backend.update_record(REDIS_FORUM_KEY.format(forum_id=forum_id), {"last_activity": utc_now_iso()})
        response = await load_forum(backend, forum_id)
    except RedisError as e:
        logger.error(f"Error joining forum {forum_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to join forum")

    if newly_joined:
        logger.info(f"User {body.user_id} joined forum {forum_id} ({response.participants} participants)")
        await hub.broadcaster.broadcast_to_room(
            forum_id,
            UserJoinedEvent(
                room_id=forum_id,
                user_id=body.user_id,
                user_name=user["display_name"],
                participants=response.participants,
            ),
        )
    return response


@forums_router.post("/{forum_id}/leave", response_model=LeaveForumResponse)
async def leave_forum(
    forum_id: str,
    body: MembershipRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not body.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    try:
        user = await load_user(backend, body.user_id)
        await backend.set_remove(REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id), body.user_id)
        await backend.set_remove(REDIS_USER_FORUMS_KEY.format(user_id=body.user_id), forum_id)
        await hub.typing.stop(forum_id, body.user_id)
        participants = await backend.set_size(REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id))
    except RedisError as e:
        logger.error(f"Error leaving forum {forum_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to leave forum")

    logger.info(f"User {body.user_id} left forum {forum_id} ({participants} participants)")
    event = UserLeftEvent(room_id=forum_id, user_id=body.user_id, user_name=user["display_name"], participants=participants)
    await hub.broadcaster.broadcast_to_room(forum_id, event)
    # No longer a participant, so the room broadcast skips the leaver's own streams
    await hub.broadcaster.broadcast_to_user(body.user_id, event)
    return LeaveForumResponse(success=True, participants=participants)
