import os
from typing import Optional
import redis.asyncio as redis

BACKEND = os.getenv("CACHE_BACKEND", "memory").lower()  # 'redis' | 'memory'
PREFIX = os.getenv("CACHE_PREFIX", "esummit26:")
DEFAULT_TTL = 300

if BACKEND == "redis":
    from ._redis import CacheStore as _CacheStore
else:
    from ._memory import CacheStore as _CacheStore


# ---- keys
def admin_key(user_id: str) -> str:
    return f"{PREFIX}admin:{user_id}"


def ticket_qr_key(secret: str) -> str:
    return f"{PREFIX}ticket_qr:{secret}"


# Factory keeps server.py backend-agnostic
def new_store(*, r: Optional[redis.Redis] = None,
              ttl_seconds: int = DEFAULT_TTL):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("CacheStore(redis) requires r=redis.Redis")
        return _CacheStore(r=r, ttl_seconds=ttl_seconds)
    return _CacheStore(ttl_seconds=ttl_seconds)


CacheStore = _CacheStore
__all__ = [
    "CacheStore", "new_store", "BACKEND",
    "admin_key", "ticket_qr_key",
]
