from __future__ import annotations
import time
from typing import Any, Callable, Dict, Optional, Tuple


class CacheStore:
    """In-process TTL cache; single event loop, no locking."""

    def __init__(self, ttl_seconds: int,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self.clock = clock
        self._items: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        hit = self._items.get(key)
        if hit is None:
            return None
        expires, value = hit
        if expires <= self.clock():
            self._items.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any,
                  ttl_seconds: Optional[int] = None) -> None:
        expires = self.clock() + (ttl_seconds or self.ttl)
        self._items[key] = (expires, value)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()
