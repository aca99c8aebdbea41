from __future__ import annotations
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class CacheStore:
    """JSON values in Redis with a TTL. Any Redis failure is a cache miss."""

    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self.r.get(key)
        except RedisError as e:
            logger.error("[Cache] get %s failed: %s", key, e)
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            # plain string values written by other writers
            return data

    async def set(self, key: str, value: Any,
                  ttl_seconds: Optional[int] = None) -> None:
        raw = value if isinstance(value, str) else json.dumps(value)
        try:
            await self.r.set(key, raw, ex=ttl_seconds or self.ttl)
        except RedisError as e:
            logger.error("[Cache] set %s failed: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self.r.delete(key)
        except RedisError as e:
            logger.error("[Cache] delete %s failed: %s", key, e)
