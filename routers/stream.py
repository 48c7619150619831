import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from redis.exceptions import RedisError

from dependencies import get_hub
from logging_config import get_logger
from realtime.hub import RealtimeHub
from realtime.session import ConnectionSession, UnknownUserError
from schemas.events import ConnectedEvent

logger = get_logger(__name__)

stream_router = APIRouter(prefix="/api", tags=["stream"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


class SessionStreamingResponse(StreamingResponse):
    """Streams an opened session and closes it even if the body is never sent."""

    def __init__(self, session: ConnectionSession, connected: ConnectedEvent):
        super().__init__(session.events(connected), media_type="text/event-stream", headers=SSE_HEADERS)
        self.session = session

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            # No-op when the stream already closed the session itself
            await asyncio.shield(self.session.close())


@stream_router.get("/sse")
async def event_stream(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    hub: RealtimeHub = Depends(get_hub),
):
    """Server-sent event stream of everything happening in the user's forums.

    The first event is ``connected`` with the new connection id. Lines starting
    with ``:`` are keep-alives and carry no payload.
    """
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    logger.info(f"Stream connection attempt for user {user_id}")
    session = hub.create_session(
        user_id,
        user_agent=request.headers.get("user-agent"),
        is_disconnected=request.is_disconnected,
    )
    # Opened before the response starts so a rejection is a plain HTTP error
    try:
        connected = await session.open()
    except UnknownUserError:
        raise HTTPException(status_code=404, detail="User not found")
    except RedisError as e:
        logger.error(f"Stream initialization failed for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to establish SSE connection")

    return SessionStreamingResponse(session, connected)
