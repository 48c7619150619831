import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend import RedisBackend, create_redis_client
from logging_config import get_logger, setup_logging
from realtime.hub import RealtimeHub
from routers.forums import forums_router
from routers.messages import messages_router
from routers.stream import stream_router
from routers.users import users_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def attach_realtime(app: FastAPI, backend: RedisBackend, hub_options: Optional[dict] = None) -> RealtimeHub:
    """Expose the store and the realtime hub to request handlers."""
    hub = RealtimeHub(backend, **(hub_options or {}))
    app.state.backend = backend
    app.state.hub = hub
    return hub


def create_app(redis_client: Optional[aioredis.Redis] = None, hub_options: Optional[dict] = None) -> FastAPI:
    """Build the application around a Redis client.

    Without ``redis_client`` one is created from REDIS_URL at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = redis_client or create_redis_client()
        backend = RedisBackend(client)
        try:
            await backend.ping()
            logger.info("Redis client connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            raise

        hub = attach_realtime(app, backend, hub_options)

        # Background tasks: cross-process drain wakeups and the registry sweeper
        tasks = [
            asyncio.create_task(hub.notifier.listen()),
            asyncio.create_task(hub.sweep_forever()),
        ]
        logger.info("Realtime hub started")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if redis_client is None:
                await backend.close()
            logger.info("Realtime hub stopped")

    app = FastAPI(title="Forum realtime backend", lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(users_router)
    app.include_router(forums_router)
    app.include_router(messages_router)
    app.include_router(stream_router)

    @app.get("/api/ping")
    async def ping(request: Request):
        return {
            "message": "pong",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": request.method,
            "url": str(request.url),
        }

    logger.info("FastAPI application initialized")
    return app


app = create_app()
