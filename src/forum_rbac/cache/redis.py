"""Redis cache backend."""

import json
import logging
from collections.abc import Iterable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

logger = logging.getLogger(__name__)

_WATCH_RETRIES = 5


class RedisCache:
    """Cache backend on Redis with JSON-encoded values.

    Redis failures are logged and degrade to a miss / no-op, so permission
    checks keep working (uncached) while Redis is unavailable.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", *, client: aioredis.Redis | None = None) -> None:
        self._redis_url = redis_url
        self._client = client

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)  # type: ignore[no-untyped-call]
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._get_client().get(key)
        except RedisError as exc:
            logger.warning("Redis get error for key %s: %s", key, exc)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._get_client().set(key, json.dumps(value), ex=ttl_seconds)
        except RedisError as exc:
            logger.warning("Redis set error for key %s: %s", key, exc)

    async def invalidate(self, keys: Iterable[str]) -> None:
        key_list = list(keys)
        if not key_list:
            return
        try:
            await self._get_client().delete(*key_list)
        except RedisError as exc:
            logger.warning("Redis invalidate error: %s", exc)

    async def increment(self, key: str, ttl_seconds: int) -> int | None:
        """Atomically create-with-TTL (if absent) and increment the counter."""
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=ttl_seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
        except RedisError as exc:
            logger.warning("Redis increment error for key %s: %s", key, exc)
            return None
        return int(count)

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool | None:
        """Check-and-increment under ``WATCH``; retried when another client changes the counter."""
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                for _ in range(_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        current = await pipe.get(key)
                        if current is not None and int(current) >= limit:
                            await pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.set(key, 0, ex=ttl_seconds, nx=True)
                        pipe.incr(key)
                        await pipe.execute()
                        return True
                    except WatchError:
                        continue
        except RedisError as exc:
            logger.warning("Redis increment error for key %s: %s", key, exc)
            return None
        logger.warning("Redis counter %s kept changing after %d attempts", key, _WATCH_RETRIES)
        return None

    async def ping(self) -> bool:
        """Check whether Redis is reachable."""
        try:
            return bool(await self._get_client().ping())
        except RedisError:
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
