import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from streamflow_proxy.configs import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Represents a cache entry with metadata."""

    data: bytes
    expires_at: float
    size: int = 0


class LRUMemoryCache:
    """Thread-safe, size-bounded LRU memory cache with per-entry expiry."""

    def __init__(self, maxsize: int):
        self.maxsize = maxsize
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._current_size = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            if key in self._cache:
                entry = self._cache.pop(key)  # Remove and re-insert for LRU
                if time.time() < entry.expires_at:
                    self._cache[key] = entry
                    return entry
                self._current_size -= entry.size
            return None

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if key in self._cache:
                old_entry = self._cache.pop(key)
                self._current_size -= old_entry.size

            # Check if we need to make space
            while self._current_size + entry.size > self.maxsize and self._cache:
                _, removed_entry = self._cache.popitem(last=False)
                self._current_size -= removed_entry.size

            self._cache[key] = entry
            self._current_size += entry.size

    def remove(self, key: str) -> None:
        with self._lock:
            if key in self._cache:
                entry = self._cache.pop(key)
                self._current_size -= entry.size


class AsyncMemoryCache:
    """Async key-value cache with get/set-with-TTL semantics."""

    def __init__(self, max_memory_size: int, default_ttl: int = 3600):
        self.memory_cache = LRUMemoryCache(maxsize=max_memory_size)
        self.default_ttl = default_ttl

    async def get(self, key: str, default: Any = None) -> Optional[bytes]:
        """Get value from cache."""
        entry = self.memory_cache.get(key)
        return entry.data if entry is not None else default

    async def set(self, key: str, data: Union[bytes, bytearray, memoryview], ttl: Optional[int] = None) -> bool:
        """Set value in cache. A ttl <= 0 removes the key instead."""
        ttl_seconds = self.default_ttl if ttl is None else ttl

        if ttl_seconds <= 0:
            self.memory_cache.remove(key)
            return True

        now = time.time()
        entry = CacheEntry(data=bytes(data), expires_at=now + ttl_seconds, size=len(data))
        self.memory_cache.set(key, entry)
        return True

    async def delete(self, key: str) -> bool:
        """Delete item from cache."""
        self.memory_cache.remove(key)
        return True


STREAMING_CACHE = AsyncMemoryCache(max_memory_size=settings.cache_max_memory_size)


async def get_cached_json(key: str, cache: AsyncMemoryCache = STREAMING_CACHE) -> Optional[Any]:
    """Get a JSON value from cache, dropping entries that fail to decode."""
    cached_data = await cache.get(key)
    if cached_data is None:
        return None
    try:
        return json.loads(cached_data)
    except json.JSONDecodeError:
        await cache.delete(key)
        return None


async def set_cached_json(key: str, value: Any, ttl: int, cache: AsyncMemoryCache = STREAMING_CACHE) -> bool:
    """Cache a JSON-serialisable value."""
    try:
        return await cache.set(key, json.dumps(value).encode(), ttl=ttl)
    except (TypeError, ValueError) as e:
        logger.error(f"Error caching value for {key}: {e}")
        return False


async def get_or_set_json(
    key: str,
    ttl: int,
    factory: Callable[[], Awaitable[Any]],
    cache: AsyncMemoryCache = STREAMING_CACHE,
) -> Any:
    """
    Return the cached value for ``key`` or compute, cache and return it.

    Falsy results from ``factory`` are returned but not cached, so an empty
    upstream answer is retried on the next call.

    Args:
        key: Cache key.
        ttl: Time to live in seconds.
        factory: Coroutine function producing the value on a miss.
        cache: Backing cache.

    Returns:
        The cached or freshly computed value.
    """
    cached = await get_cached_json(key, cache)
    if cached is not None:
        logger.debug(f"Serving from cache for key: {key}")
        return cached

    logger.debug(f"Cache miss for key: {key}")
    value = await factory()
    if value:
        await set_cached_json(key, value, ttl, cache)
    return value
