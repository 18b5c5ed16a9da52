"""Optional read-through JSON cache on top of Redis.

The database is always the source of truth. Every cache failure is logged
and treated as a miss, so a Redis outage only costs latency.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from billing.core.redis import get_redis

logger = logging.getLogger(__name__)


class Cache:
    """Thin JSON wrapper around an optional Redis client."""

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int = 86400) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds

    @property
    def client(self) -> redis.Redis | None:
        return self._client if self._client is not None else get_redis()

    async def get(self, key: str) -> Any | None:
        client = self.client
        if client is None:
            return None
        try:
            raw = await client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping undecodable cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        client = self.client
        if client is None:
            return
        try:
            await client.set(key, json.dumps(value, default=str), ex=ttl_seconds or self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def delete(self, *keys: str) -> None:
        client = self.client
        if client is None or not keys:
            return
        try:
            await client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for {keys}: {e}")

    async def delete_pattern(self, pattern: str) -> None:
        """Delete every key matching a glob pattern."""
        client = self.client
        if client is None:
            return
        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if keys:
                await client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {e}")
