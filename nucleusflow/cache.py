"""Bounded, expiring cache shared by the template and output stages.

Entries leave the cache on whichever trigger fires first: the entry is
older than the TTL, or the cache is over its size bound (least recently
used entries go first).
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class BoundedCache(Generic[V]):
    """Thread-safe LRU cache with per-entry TTL.

    Attributes:
        max_size: Maximum number of entries kept.
        ttl: Seconds an entry stays valid; ``None`` disables expiry.
        stats: Hit/miss/eviction counters.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl = ttl
        self.stats = CacheStats()
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return self._live(key) is not None

    def _live(self, key: Hashable) -> tuple[float, V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, _ = entry
        if self.ttl is not None and self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            self.stats.evictions += 1
            logger.debug("Cache entry expired: %s", key)
            return None
        return entry

    def get(self, key: Hashable) -> V | None:
        """Return the live value for ``key`` or None, counting hit/miss."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry[1]

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.stats.evictions += 1
                logger.debug("Cache entry evicted: %s", evicted)

    def get_or_create(self, key: Hashable, factory: Callable[[], V]) -> tuple[V, bool]:
        """Return the cached value, creating it under the lock on a miss.

        The factory runs at most once per missing key even when several
        threads ask for it at the same time.

        Returns:
            Tuple of (value, created) where ``created`` is True on a miss.
        """
        with self._lock:
            value = self.get(key)
            if value is not None:
                return value, False
            value = factory()
            self.put(key, value)
            return value, True

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[Hashable]:
        with self._lock:
            return [key for key in list(self._entries) if self._live(key) is not None]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
