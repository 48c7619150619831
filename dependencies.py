from fastapi import Request

from backend import RedisBackend
from realtime.hub import RealtimeHub


def get_backend(request: Request) -> RedisBackend:
    return request.app.state.backend


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub
