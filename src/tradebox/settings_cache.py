"""Short-TTL in-memory cache for rarely written admin settings.

The settlement pass reads the global trade-control setting on every
invocation; this cache keeps those reads off the database. Entries may be
served up to ``ttl`` seconds stale. Writers call ``invalidate`` after
changing the underlying rows.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tradebox.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30.0


class SettingsCache:
    """Keyed TTL cache with an async loader per lookup.

    Args:
        default_ttl: TTL applied when ``get`` is called without one.
        clock: Monotonic time source (injected by tests).
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def get(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or load and cache a fresh one.

        The lock is held across the load so concurrent misses trigger a
        single loader call.
        """
        ttl = self._default_ttl if ttl is None else ttl
        async with self._lock:
            now = self._clock()
            cached = self._entries.get(key)
            if cached is not None and now - cached[1] < ttl:
                self._hits += 1
                logger.debug("settings_cache_hit", key=key)
                return cached[0]

            self._misses += 1
            logger.debug("settings_cache_miss", key=key)
            value = await loader()
            self._entries[key] = (value, now)
            return value

    def invalidate(self, key: str) -> None:
        """Drop one cached key."""
        self._entries.pop(key, None)
        logger.info("settings_cache_invalidated", key=key)

    def invalidate_all(self) -> None:
        """Drop every cached key."""
        self._entries.clear()
        logger.info("settings_cache_cleared")

    def get_stats(self) -> dict:
        """Return cache size, keys, and hit/miss counters."""
        return {
            "size": len(self._entries),
            "entries": list(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }
