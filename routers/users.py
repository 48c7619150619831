import re
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from redis.exceptions import RedisError

from backend import RedisBackend
from constants import AUTH_RATE_LIMIT, AUTH_RATE_WINDOW_SECONDS, USER_SESSION_TTL_SECONDS
from dependencies import get_backend, get_hub
from logging_config import get_logger
from realtime.hub import RealtimeHub
from redis_keys import REDIS_AUTH_RATE_KEY, REDIS_USER_KEY, REDIS_USER_SESSION_KEY, REDIS_USERS_KEY
from schemas.base import utc_now_iso
from schemas.users import CreateUserRequest, SignOutRequest, UserResponse

logger = get_logger(__name__)

users_router = APIRouter(prefix="/api/auth", tags=["users"])

MIN_DISPLAY_NAME = 2
MAX_DISPLAY_NAME = 50
MAX_ABOUT_ME = 200
MAX_INTERESTS = 10


def sanitize(text: str) -> str:
    return re.sub(r"[<>]", "", text.strip())


async def check_rate_limit(request: Request, backend: RedisBackend):
    client_host = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
    count = await backend.increment(REDIS_AUTH_RATE_KEY.format(client=client_host), ttl=AUTH_RATE_WINDOW_SECONDS)
    if count > AUTH_RATE_LIMIT:
        logger.warning(f"Auth rate limit hit by {client_host} ({count} requests)")
        raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")


@users_router.post("", response_model=UserResponse)
async def create_user(body: CreateUserRequest, request: Request, backend: RedisBackend = Depends(get_backend)):
    logger.info(f"User creation request from {request.client.host if request.client else 'unknown'}, display_name: {body.display_name}")
    await check_rate_limit(request, backend)

    display_name = sanitize(body.display_name or "")
    if not display_name:
        raise HTTPException(status_code=400, detail="Display name is required")
    if len(display_name) < MIN_DISPLAY_NAME:
        raise HTTPException(status_code=400, detail="Display name must be at least 2 characters long")
    if len(display_name) > MAX_DISPLAY_NAME:
        raise HTTPException(status_code=400, detail="Display name must be less than 50 characters")

    try:
        # Case-insensitive uniqueness check
        for existing_id in await backend.set_members(REDIS_USERS_KEY):
            existing = await backend.get_record(REDIS_USER_KEY.format(user_id=existing_id))
            if existing and str(existing.get("display_name", "")).lower() == display_name.lower():
                logger.warning(f"User creation rejected: display name '{display_name}' already taken")
                raise HTTPException(status_code=409, detail="Display name already taken")

        user_id = uuid.uuid4().hex
        now = utc_now_iso()
        user = {
            "id": user_id,
            "display_name": display_name,
            "about_me": sanitize(body.about_me)[:MAX_ABOUT_ME] if body.about_me else "",
            "interests": (body.interests or [])[:MAX_INTERESTS],
            "joined_at": now,
            "last_active": now,
            "message_count": 0,
            "forums_created": 0,
            "discussions_joined": [],
            "is_online": False,
        }
        await backend.save_record(REDIS_USER_KEY.format(user_id=user_id), user)
        await backend.set_add(REDIS_USERS_KEY, user_id)
        await backend.save_record(
            REDIS_USER_SESSION_KEY.format(user_id=user_id),
            {"created_at": now, "last_activity": now, "user_agent": request.headers.get("user-agent", "unknown")},
            ttl=USER_SESSION_TTL_SECONDS,
        )
    except RedisError as e:
        logger.error(f"Error creating user: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create user")

    logger.info(f"User {user_id} created: display_name={display_name}")
    return UserResponse(**user)


@users_router.get("", response_model=UserResponse)
async def get_user(
    user_id: Optional[str] = Query(None, alias="userId"),
    backend: RedisBackend = Depends(get_backend),
    hub: RealtimeHub = Depends(get_hub),
):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    try:
        user = await backend.get_record(REDIS_USER_KEY.format(user_id=user_id))
        if not user:
            logger.warning(f"Get user failed: user {user_id} not found")
            raise HTTPException(status_code=404, detail="User not found")

        now = utc_now_iso()
        await backend.update_record(REDIS_USER_SESSION_KEY.format(user_id=user_id), {"last_activity": now}, ttl=USER_SESSION_TTL_SECONDS)
        await backend.update_record(REDIS_USER_KEY.format(user_id=user_id), {"last_active": now})
        user["last_active"] = now
        # Presence is derived from live connections, not from this request
        user["is_online"] = await hub.presence.is_online(user_id)
    except RedisError as e:
        logger.error(f"Error getting user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get user")

    return UserResponse(**user)


@users_router.delete("")
async def sign_out(body: SignOutRequest, backend: RedisBackend = Depends(get_backend), hub: RealtimeHub = Depends(get_hub)):
    if not body.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    try:
        await backend.delete(REDIS_USER_SESSION_KEY.format(user_id=body.user_id))
        still_online = await hub.presence.on_disconnect(body.user_id)
    except RedisError as e:
        logger.error(f"Error signing out user {body.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to sign out")

    logger.info(f"User {body.user_id} signed out (open streams remaining: {still_online})")
    return {"success": True}
