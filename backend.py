import json
from typing import Any, Optional

import redis.asyncio as aioredis

from constants import REDIS_URL
from logging_config import get_logger

logger = get_logger(__name__)


def create_redis_client(url: str = REDIS_URL) -> aioredis.Redis:
    """Build the asyncio Redis client used by the app (one per process)."""
    return aioredis.from_url(url, encoding="utf-8", decode_responses=True)


def _encode_fields(data: dict) -> dict:
    # Every field is JSON encoded so "123" stays a string and 5 stays an int; None is skipped
    return {k: json.dumps(v) for k, v in data.items() if v is not None}


def _decode_fields(raw: dict) -> dict:
    result = {}
    for k, v in raw.items():
        try:
            result[k] = json.loads(v)
        except (json.JSONDecodeError, TypeError):
            result[k] = v
    return result


class RedisBackend:
    """Shared store for every piece of forum and realtime state.

    Wraps an injected ``redis.asyncio.Redis`` client so tests can pass an
    in-memory fake. Redis errors propagate; callers decide whether a failure
    is fatal.
    """

    def __init__(self, redis_client: aioredis.Redis):
        self.redis_client = redis_client
        logger.info("Initializing RedisBackend")

    async def ping(self) -> bool:
        return await self.redis_client.ping()

    async def close(self):
        await self.redis_client.aclose()
        logger.info("Redis client closed")

    # Hash records

    async def save_record(self, key: str, data: dict, ttl: Optional[int] = None):
        logger.debug(f"Saving record {key} with TTL {ttl}")
        mapping = _encode_fields(data)
        if not mapping:
            return
        await self.redis_client.hset(key, mapping=mapping)
        if ttl:
            await self.redis_client.expire(key, ttl)

    async def get_record(self, key: str) -> Optional[dict]:
        raw = await self.redis_client.hgetall(key)
        if not raw:
            logger.debug(f"Record {key} not found")
            return None
        return _decode_fields(raw)

    async def update_record(self, key: str, fields: dict, ttl: Optional[int] = None) -> bool:
        """Update fields of an existing record; a missing record is left missing."""
        if not await self.redis_client.exists(key):
            logger.debug(f"Skipping update of missing record {key}")
            return False
        await self.redis_client.hset(key, mapping=_encode_fields(fields))
        if ttl:
            await self.redis_client.expire(key, ttl)
        return True

    async def increment_field(self, key: str, field: str, amount: int = 1) -> int:
        return await self.redis_client.hincrby(key, field, amount)

    async def delete_fields(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return await self.redis_client.hdel(key, *fields)

    # Plain values and counters

    async def set_value(self, key: str, value: Any, ttl: Optional[int] = None):
        await self.redis_client.set(key, value, ex=ttl)

    async def get_value(self, key: str) -> Optional[str]:
        return await self.redis_client.get(key)

    async def increment(self, key: str, ttl: Optional[int] = None) -> int:
        count = await self.redis_client.incr(key)
        if ttl and count == 1:
            await self.redis_client.expire(key, ttl)
        return count

    async def exists(self, key: str) -> bool:
        return bool(await self.redis_client.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = await self.redis_client.delete(*keys)
        logger.debug(f"Deleted {deleted} of keys {keys}")
        return deleted

    # Sets

    async def set_add(self, key: str, *members: str) -> int:
        return await self.redis_client.sadd(key, *members)

    async def set_remove(self, key: str, *members: str) -> int:
        return await self.redis_client.srem(key, *members)

    async def set_members(self, key: str) -> set[str]:
        return await self.redis_client.smembers(key)

    async def set_is_member(self, key: str, member: str) -> bool:
        return bool(await self.redis_client.sismember(key, member))

    async def set_size(self, key: str) -> int:
        return await self.redis_client.scard(key)

    # Lists

    async def list_push(self, key: str, value: str, ttl: Optional[int] = None) -> int:
        """Append to the tail of a list, refreshing its TTL."""
        length = await self.redis_client.rpush(key, value)
        if ttl:
            await self.redis_client.expire(key, ttl)
        return length

    async def list_push_front(self, key: str, value: str) -> int:
        return await self.redis_client.lpush(key, value)

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        return await self.redis_client.lrange(key, start, end)

    async def list_trim(self, key: str, start: int, end: int):
        await self.redis_client.ltrim(key, start, end)

    async def list_remove(self, key: str, value: str) -> int:
        return await self.redis_client.lrem(key, 0, value)

    async def list_length(self, key: str) -> int:
        return await self.redis_client.llen(key)

    async def list_drain(self, key: str) -> list[str]:
        """Read the whole list and delete it in a single MULTI/EXEC."""
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.lrange(key, 0, -1)
            pipe.delete(key)
            items, _ = await pipe.execute()
        return items

    # Pub/sub

    async def publish(self, channel: str, message: Any) -> int:
        payload = message if isinstance(message, str) else json.dumps(message)
        subscribers = await self.redis_client.publish(channel, payload)
        logger.debug(f"Published to channel {channel}, {subscribers} subscribers")
        return subscribers

    async def subscribe(self, channel: str):
        """Create a pubsub subscriber for a channel."""
        logger.debug(f"Subscribing to Redis channel {channel}")
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(channel)
        return pubsub
