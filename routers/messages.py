import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from redis.exceptions import RedisError

from backend import RedisBackend
from constants import MAX_MESSAGE_LENGTH, MESSAGE_HISTORY_LIMIT, MESSAGE_RATE_LIMIT_SECONDS
from dependencies import get_backend, get_hub
from logging_config import get_logger
from realtime.hub import RealtimeHub
from redis_keys import (
    REDIS_FORUM_KEY,
    REDIS_FORUM_MESSAGES_KEY,
    REDIS_MESSAGE_KEY,
    REDIS_PARTICIPANTS_KEY,
    REDIS_USER_KEY,
    REDIS_USER_LAST_MESSAGE_KEY,
)
from schemas.base import utc_now_iso
from schemas.events import MessageDeletedEvent, MessageEditedEvent, MessageEvent, MessagePayload, TypingEvent
from schemas.messages import (
    DeleteMessageRequest,
    EditMessageRequest,
    MessageListResponse,
    SendMessageRequest,
    SuccessResponse,
    TypingRequest,
)

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


def clean_text(text: Optional[str]) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    if len(cleaned) > MAX_MESSAGE_LENGTH:
        raise HTTPException(status_code=400, detail=f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
    return cleaned


async def require_participant(backend: RedisBackend, forum_id: str, user_id: str, detail: str):
    if not await backend.set_is_member(REDIS_PARTICIPANTS_KEY.format(forum_id=forum_id), user_id):
        logger.warning(f"User {user_id} is not a participant of forum {forum_id}")
        raise HTTPException(status_code=403, detail=detail)


async def load_own_message(backend: RedisBackend, message_id: str, user_id: str, action: str) -> dict:
    message = await backend.get_record(REDIS_MESSAGE_KEY.format(message_id=message_id))
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message.get("user_id") != user_id:
        logger.warning(f"User {user_id} tried to {action} message {message_id} owned by {message.get('user_id')}")
        raise HTTPException(status_code=403, detail=f"You can only {action} your own messages")
    return message


@messages_router.get("", response_model=MessageListResponse)
async def list_messages(
    forum_id: Optional[str] = Query(None, alias="forumId"),
    limit: int = Query(50, ge=1, le=MESSAGE_HISTORY_LIMIT),
    offset: int = Query(0, ge=0),
    backend: RedisBackend = Depends(get_backend),
):
    if not forum_id:
        raise HTTPException(status_code=400, detail="Forum ID is required")

    try:
        if not await backend.exists(REDIS_FORUM_KEY.format(forum_id=forum_id)):
            raise HTTPException(status_code=404, detail="Forum not found")

        messages_key = REDIS_FORUM_MESSAGES_KEY.format(forum_id=forum_id)
        message_ids = await backend.list_range(messages_key, offset, offset + limit - 1)
        messages = []
        for message_id in message_ids:
            message = await backend.get_record(REDIS_MESSAGE_KEY.format(message_id=message_id))
            if message:
                messages.append(MessagePayload(**message))
        total = await backend.list_length(messages_key)
    except RedisError as e:
        logger.error(f"Error fetching messages for forum {forum_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch messages")

    # Oldest first for chat display
    messages.sort(key=lambda m: m.timestamp)
    return MessageListResponse(messages=messages, has_more=len(message_ids) == limit, total=total)


@messages_router.post("", response_model=MessagePayload, response_model_exclude_none=True, status_code=201)
async def send_message(
    body: SendMessageRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not body.forum_id or not body.user_id or not body.text:
        raise HTTPException(status_code=400, detail="Forum ID, user ID, and text are required")
    text = clean_text(body.text)

    try:
        user = await backend.get_record(REDIS_USER_KEY.format(user_id=body.user_id))
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        if not await backend.exists(REDIS_FORUM_KEY.format(forum_id=body.forum_id)):
            raise HTTPException(status_code=404, detail="Forum not found")
        await require_participant(backend, body.forum_id, body.user_id, "You must join the forum to send messages")

        last_message_key = REDIS_USER_LAST_MESSAGE_KEY.format(user_id=body.user_id)
        if await backend.exists(last_message_key):
            raise HTTPException(status_code=429, detail="Please wait before sending another message")

        message = MessagePayload(
            id=uuid.uuid4().hex,
            forum_id=body.forum_id,
            user_id=body.user_id,
            user_name=user["display_name"],
            text=text,
            timestamp=utc_now_iso(),
            edited=False,
        )
        messages_key = REDIS_FORUM_MESSAGES_KEY.format(forum_id=body.forum_id)
        await backend.save_record(REDIS_MESSAGE_KEY.format(message_id=message.id), message.model_dump())
        await backend.list_push_front(messages_key, message.id)
        await backend.set_value(last_message_key, str(int(time.time() * 1000)), ttl=MESSAGE_RATE_LIMIT_SECONDS)
        # Keep only the recent history window
        await backend.list_trim(messages_key, 0, MESSAGE_HISTORY_LIMIT - 1)

        await backend.increment_field(REDIS_USER_KEY.format(user_id=body.user_id), "message_count")
        await backend.update_record(REDIS_USER_KEY.format(user_id=body.user_id), {"last_active": message.timestamp})
        await backend.update_record(REDIS_FORUM_KEY.format(forum_id=body.forum_id), {"last_activity": message.timestamp})
        await hub.typing.stop(body.forum_id, body.user_id)
    except RedisError as e:
        logger.error(f"Error sending message to forum {body.forum_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send message")

    logger.info(f"Message {message.id} sent to forum {body.forum_id} by {body.user_id}")
    await hub.broadcaster.broadcast_to_room(body.forum_id, MessageEvent(room_id=body.forum_id, message=message))
    await hub.broadcaster.broadcast_to_room(
        body.forum_id,
        TypingEvent(room_id=body.forum_id, user_id=body.user_id, user_name=message.user_name, is_typing=False),
    )
    return message


@messages_router.put("", response_model=MessagePayload, response_model_exclude_none=True)
async def edit_message(
    body: EditMessageRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not body.message_id or not body.user_id or not body.text:
        raise HTTPException(status_code=400, detail="Message ID, user ID, and text are required")
    text = clean_text(body.text)

    try:
        message = await load_own_message(backend, body.message_id, body.user_id, "edit")
        message.update(text=text, edited=True, edited_at=utc_now_iso())
        await backend.save_record(REDIS_MESSAGE_KEY.format(message_id=body.message_id), message)
    except RedisError as e:
        logger.error(f"Error editing message {body.message_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to edit message")

    updated = MessagePayload(**message)
    logger.info(f"Message {updated.id} edited by {body.user_id}")
    await hub.broadcaster.broadcast_to_room(updated.forum_id, MessageEditedEvent(room_id=updated.forum_id, message=updated))
    return updated


@messages_router.delete("", response_model=SuccessResponse)
async def delete_message(
    body: DeleteMessageRequest,
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not body.message_id or not body.user_id:
        raise HTTPException(status_code=400, detail="Message ID and user ID are required")

    try:
        message = await load_own_message(backend, body.message_id, body.user_id, "delete")
        forum_id = message["forum_id"]
        await backend.delete(REDIS_MESSAGE_KEY.format(message_id=body.message_id))
        await backend.list_remove(REDIS_FORUM_MESSAGES_KEY.format(forum_id=forum_id), body.message_id)
    except RedisError as e:
        logger.error(f"Error deleting message {body.message_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete message")

    logger.info(f"Message {body.message_id} deleted by {body.user_id}")
    await hub.broadcaster.broadcast_to_room(forum_id, MessageDeletedEvent(room_id=forum_id, message_id=body.message_id))
    return SuccessResponse()


async def set_typing(body: TypingRequest, backend: RedisBackend, hub: RealtimeHub, is_typing: bool) -> SuccessResponse:
    if not body.forum_id or not body.user_id:
        raise HTTPException(status_code=400, detail="Forum ID and user ID are required")

    try:
        user = await backend.get_record(REDIS_USER_KEY.format(user_id=body.user_id))
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        await require_participant(backend, body.forum_id, body.user_id, "You must join the forum first")
        if is_typing:
            await hub.typing.start(body.forum_id, body.user_id, user["display_name"])
        else:
            await hub.typing.stop(body.forum_id, body.user_id)
    except RedisError as e:
        logger.error(f"Typing indicator error in forum {body.forum_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to handle typing indicator")

    logger.debug(f"User {body.user_id} typing={is_typing} in forum {body.forum_id}")
    await hub.broadcaster.broadcast_to_room(
        body.forum_id,
        TypingEvent(room_id=body.forum_id, user_id=body.user_id, user_name=user["display_name"], is_typing=is_typing),
    )
    return SuccessResponse()


@messages_router.post("/typing", response_model=SuccessResponse)
async def start_typing(body: TypingRequest, backend: RedisBackend = Depends(get_backend), hub: RealtimeHub = Depends(get_hub)):
    return await set_typing(body, backend, hub, is_typing=True)


@messages_router.delete("/typing", response_model=SuccessResponse)
async def stop_typing(body: TypingRequest, backend: RedisBackend = Depends(get_backend), hub: RealtimeHub = Depends(get_hub)):
    return await set_typing(body, backend, hub, is_typing=False)
