"""
Cache Store - TTL key/value cache shared by providers and the pipeline.

Expiry is lazy (checked on every read) with an optional periodic sweep
to bound memory. When ``max_size`` is reached the oldest entry is evicted.

Keys are namespaced by the caller:
- ``pipeline:analysis:{address}`` for merged analyses
- ``provider:{name}:{address}`` for normalized provider data
"""

import asyncio
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its monotonic creation time and TTL."""
    key: str
    data: T
    timestamp: float
    ttl_seconds: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        """Check if the entry is past its TTL."""
        return now - self.timestamp >= self.ttl_seconds

    def age_seconds(self, now: float) -> float:
        """Get age of cache entry in seconds."""
        return now - self.timestamp


class CacheStore:
    """
    Thread-safe TTL cache.

    All operations are synchronous and hold a lock for their whole
    duration, so concurrent pipeline tasks never observe a torn entry.
    """

    DEFAULT_TTL_SECONDS = 300.0
    DEFAULT_MAX_SIZE = 10_000
    DEFAULT_CLEANUP_INTERVAL = 60.0

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Optional[ClockProtocol] = None,
        name: str = "cache",
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.name = name
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    # ─────────────────────────────────────────────────────────────
    # Core operations
    # ─────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock.monotonic()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None

            entry.hits += 1
            self._hits += 1
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, overwriting any previous value for the key."""
        ttl_seconds = self._default_ttl if ttl is None else ttl
        if ttl_seconds <= 0:
            raise ValueError("ttl must be positive")

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                oldest_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"[{self.name}] Evicted oldest entry {oldest_key}")

            self._entries[key] = CacheEntry(
                key=key,
                data=value,
                timestamp=self._clock.monotonic(),
                ttl_seconds=ttl_seconds,
            )

    def has(self, key: str) -> bool:
        """Check for a live entry without counting a hit."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock.monotonic()):
                del self._entries[key]
                self._expirations += 1
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with ``prefix``."""
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()
        logger.info(f"[{self.name}] Cache cleared")

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock.monotonic()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            logger.debug(f"[{self.name}] Cleaned {len(expired)} expired cache entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ─────────────────────────────────────────────────────────────
    # Periodic sweep
    # ─────────────────────────────────────────────────────────────

    def start_cleanup(self, interval_seconds: float = DEFAULT_CLEANUP_INTERVAL) -> None:
        """Start the background sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval_seconds))

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await self._clock.sleep(interval_seconds)
            self.cleanup()

    # ─────────────────────────────────────────────────────────────
    # Stats
    # ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0
            return {
                "name": self.name,
                "entries": len(self._entries),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate_percent": round(hit_rate, 2),
            }


__all__ = [
    "CacheEntry",
    "CacheStore",
]
