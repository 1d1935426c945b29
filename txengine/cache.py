"""
In-memory TTL cache for slow-changing reference data (registry gas prices).
"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """TTL cache with LRU eviction and coalesced loads."""

    def __init__(
        self,
        default_ttl: float = 300,
        max_size: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[V, float]]" = OrderedDict()
        self._loading: Dict[Hashable, "asyncio.Future[V]"] = {}

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: Hashable, value: V, ttl: Optional[float] = None) -> None:
        self._entries[key] = (value, self._clock() + (ttl or self.default_ttl))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[V]]) -> V:
        """
        Return the cached value or load it once.

        Concurrent misses for the same key wait on a single ``loader`` call;
        a failed load is not cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._loading.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, loader))
            self._loading[key] = pending
        return await asyncio.shield(pending)

    async def _load(self, key: Hashable, loader: Callable[[], Awaitable[V]]) -> V:
        try:
            value = await loader()
            self.set(key, value)
            return value
        finally:
            self._loading.pop(key, None)

    def invalidate(self, key: Any) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
