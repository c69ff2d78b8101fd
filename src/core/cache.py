"""Bounded in-memory TTL cache.

Used for memoised message parses and for live lab sessions. Instances are
built explicitly and handed to their consumers; there is no module-level
cache in this file.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Distinguishes "not cached" from a cached None.
MISSING: Any = object()


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with expiration."""

    value: V
    expires_at: float

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.time() > self.expires_at


@dataclass
class CacheConfig:
    """Configuration for a TTL cache."""

    max_size: int = 100
    ttl_seconds: int = 3600
    cleanup_interval_seconds: int = 600
    sliding: bool = False  # refresh expiry on every read

    @classmethod
    def for_parse_cache(cls) -> "CacheConfig":
        """Create the message parse cache config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(
            max_size=settings.parse_cache_size,
            ttl_seconds=settings.parse_cache_ttl,
        )

    @classmethod
    def for_lab_sessions(cls) -> "CacheConfig":
        """Create the live lab session cache config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(
            max_size=settings.lab_session_cache_size,
            ttl_seconds=settings.lab_session_ttl,
            cleanup_interval_seconds=300,
            sliding=True,
        )


class TTLCache(Generic[V]):
    """Thread-safe bounded cache with per-entry TTL.

    When full, expired entries are dropped first, then the 10% of entries
    closest to expiry. ``on_evict`` is called for every value that leaves
    the cache through expiry, eviction or ``clear``.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        name: str = "cache",
        on_evict: Callable[[V], None] | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self.name = name
        self._on_evict = on_evict
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = RLock()
        self._cleanup_task: asyncio.Task | None = None
        self._hits = 0
        self._misses = 0

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("%s cleanup task started", self.name)

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("%s cleanup task stopped", self.name)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            count = self.cleanup()
            if count > 0:
                logger.debug("%s cleaned up %d expired entries", self.name, count)

    def get(self, key: str, default: Any = MISSING) -> Any:
        """Get a cached value.

        Args:
            key: Cache key.
            default: Returned on a miss. Defaults to ``MISSING`` so that a
                cached ``None`` can be told apart from a miss.

        Returns:
            The cached value or ``default``.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default

            if entry.is_expired():
                del self._entries[key]
                self._misses += 1
                self._evicted(entry.value)
                return default

            if self.config.sliding:
                entry.expires_at = time.time() + self.config.ttl_seconds
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        """Cache a value with the configured TTL."""
        expires_at = time.time() + self.config.ttl_seconds

        with self._lock:
            if key not in self._entries and len(self._entries) >= self.config.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def pop(self, key: str) -> V | None:
        """Remove and return a value without calling ``on_evict``."""
        with self._lock:
            entry = self._entries.pop(key, None)
            return entry.value if entry else None

    def values(self) -> list[V]:
        """Snapshot of the live values."""
        with self._lock:
            return [entry.value for entry in self._entries.values() if not entry.is_expired()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_oldest(self) -> None:
        """Make room for one entry. Must be called with lock held."""
        self._drop([k for k, v in self._entries.items() if v.is_expired()])

        if len(self._entries) >= self.config.max_size:
            by_expiry = sorted(self._entries.items(), key=lambda item: item[1].expires_at)
            to_remove = max(1, len(self._entries) // 10)
            self._drop([key for key, _ in by_expiry[:to_remove]])
            logger.debug("Evicted %d entries from %s", to_remove, self.name)

    def _drop(self, keys: list[str]) -> None:
        for key in keys:
            entry = self._entries.pop(key)
            self._evicted(entry.value)

    def _evicted(self, value: V) -> None:
        if self._on_evict is not None:
            self._on_evict(value)

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            expired_keys = [k for k, v in self._entries.items() if v.is_expired()]
            self._drop(expired_keys)
            return len(expired_keys)

    def clear(self) -> int:
        """Clear all cached entries.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            keys = list(self._entries)
            self._drop(keys)
            if keys:
                logger.info("Cleared %d entries from %s", len(keys), self.name)
            return len(keys)

    def get_stats(self) -> dict:
        """Get cache statistics for monitoring."""
        with self._lock:
            valid_count = sum(1 for v in self._entries.values() if not v.is_expired())
            return {
                "total_entries": len(self._entries),
                "valid_entries": valid_count,
                "expired_entries": len(self._entries) - valid_count,
                "hits": self._hits,
                "misses": self._misses,
                "max_size": self.config.max_size,
                "ttl_seconds": self.config.ttl_seconds,
            }


ParseCache = TTLCache[dict | None]


def create_parse_cache() -> ParseCache:
    """Build the message parse cache from settings."""
    return TTLCache(CacheConfig.for_parse_cache(), name="Parse cache")
