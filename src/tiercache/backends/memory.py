"""In-process cache backend.

Provides:
- TTLStore: thread-safe dict store with per-entry TTL (no external dependencies)
- MemoryBackend: StorageBackend over a TTLStore
- new_memory_cache: build a CacheAdapter over a fresh store
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Any

from tiercache.adapter import CacheAdapter
from tiercache.backends.base import StorageBackend
from tiercache.datatypes import add_numeric, as_int64
from tiercache.errors import KeyNotFoundError
from tiercache.options import MemoryOptions

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A single cache entry with expiration."""

    value: Any
    expires_at: float | None = None  # Monotonic timestamp, None = no expiration

    def is_expired(self, now: float | None = None) -> bool:
        """Check if entry has expired."""
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate percentage."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


class TTLStore:
    """In-memory store with TTL support.

    Thread-safe; expired entries are dropped on access and purged in bulk
    at most once per purge interval.

    Args:
        default_ttl: TTL in seconds for new entries (None = no expiration)
        purge_interval: Seconds between bulk purges of expired entries
        max_size: Maximum number of entries, oldest evicted first (0 = unlimited)
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        purge_interval: float = 120.0,
        max_size: int = 0,
    ):
        self._data: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._default_ttl = default_ttl
        self._purge_interval = purge_interval
        self._max_size = max_size
        self._next_purge = time.monotonic() + purge_interval
        self._stats = CacheStats()

    def _expiry(self, ttl: float | None) -> float | None:
        ttl = ttl if ttl is not None else self._default_ttl
        return time.monotonic() + ttl if ttl else None

    def _maybe_purge(self) -> None:
        """Purge expired entries once the interval has elapsed. Lock held."""
        now = time.monotonic()
        if now < self._next_purge:
            return
        self._next_purge = now + self._purge_interval
        expired = [k for k, v in self._data.items() if v.is_expired(now)]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired entries")

    def _live(self, key: str) -> CacheEntry | None:
        """Return the live entry for a key, dropping it if expired. Lock held."""
        self._maybe_purge()
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._data[key]
            return None
        return entry

    def _store(self, key: str, value: Any, ttl: float | None) -> None:
        """Store an entry, evicting the oldest at capacity. Lock held."""
        if self._max_size and len(self._data) >= self._max_size and key not in self._data:
            oldest_key = next(iter(self._data))
            del self._data[oldest_key]
        self._data[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))

    def get(self, key: str) -> Any:
        """Get a value. Raises KeyError on a miss."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._stats.misses += 1
                raise KeyError(key)
            self._stats.hits += 1
            return entry.value

    def contains(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        with self._lock:
            return self._live(key) is not None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._maybe_purge()
            self._store(key, value, ttl)

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a value only if the key is absent."""
        with self._lock:
            if self._live(key) is not None:
                return False
            self._store(key, value, ttl)
            return True

    def replace(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a value only if the key is present."""
        with self._lock:
            if self._live(key) is None:
                return False
            self._store(key, value, ttl)
            return True

    def touch(self, key: str, ttl: float | None = None) -> bool:
        """Reset the expiry of a live key."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._expiry(ttl)
            return True

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it was live."""
        with self._lock:
            found = self._live(key) is not None
            self._data.pop(key, None)
            return found

    def update(self, key: str, func: Callable[[Any], Any]) -> Any:
        """Replace a live value with func(value), keeping its expiry.

        Raises:
            KeyError: If the key is missing or expired
        """
        with self._lock:
            entry = self._live(key)
            if entry is None:
                raise KeyError(key)
            entry.value = func(entry.value)
            return entry.value

    def incr(self, key: str, delta: int) -> Any:
        """Add delta to a numeric value, keeping its kind."""
        return self.update(key, lambda value: add_numeric(value, delta))

    def clear(self) -> None:
        """Remove every entry and reset statistics."""
        with self._lock:
            self._data.clear()
            self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats

    @property
    def size(self) -> int:
        """Current number of entries, expired ones included until purged."""
        return len(self._data)


class MemoryBackend(StorageBackend):
    """Backend storing Python objects in a TTLStore."""

    name = "memory"

    def __init__(self, options: MemoryOptions, store: TTLStore | None = None):
        super().__init__(options)
        if store is None:
            store = TTLStore(
                default_ttl=options.ttl_seconds,
                purge_interval=options.purge_interval.total_seconds(),
                max_size=options.max_size,
            )
        self._store = store

    @property
    def client(self) -> TTLStore:
        return self._store

    def get(self, key: str) -> Any:
        try:
            return self._store.get(key)
        except KeyError:
            raise KeyNotFoundError(key) from None

    def exists(self, key: str) -> bool:
        return self._store.contains(key)

    def set(self, key: str, value: Any) -> None:
        self._store.set(key, value)

    def replace(self, key: str, value: Any) -> bool:
        return self._store.replace(key, value)

    def expire(self, key: str) -> bool:
        return self._store.touch(key)

    def delete(self, key: str) -> bool:
        return self._store.delete(key)

    def incr(self, key: str, delta: int) -> int:
        try:
            value = self._store.incr(key, delta)
        except KeyError:
            raise KeyNotFoundError(key) from None
        return as_int64(value)


def new_memory_cache(
    namespace: str = "",
    ttl: float | timedelta | None = None,
    purge_interval: float | timedelta = 120,
    **options,
) -> CacheAdapter:
    """Create an in-process cache.

    Args:
        namespace: Prefix applied to every key
        ttl: Time to live, seconds or timedelta (None = no expiry)
        purge_interval: Seconds or timedelta between purges of expired entries
        **options: Any other MemoryOptions field

    Returns:
        CacheAdapter over a new TTLStore
    """
    opts = MemoryOptions(
        namespace=namespace,
        ttl=ttl,
        purge_interval=purge_interval,
        **options,
    )
    return CacheAdapter(MemoryBackend(opts))
