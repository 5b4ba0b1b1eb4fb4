import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple


class TimedCache:
    """Async get-or-load cache whose entries expire ``ttl_seconds`` after loading.

    Concurrent misses for the same key share one load. Failed loads are not
    cached.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        value = self.get(key)
        if value is not None:
            return value
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            value = self.get(key)
            if value is not None:
                return value
            value = await loader()
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
