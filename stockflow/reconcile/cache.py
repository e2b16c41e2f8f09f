"""
Reconciliation Cache - memoized derived values for one computation pass.

Entries are filled lazily on first lookup and the whole cache is dropped
when any source collection changes; it is never patched in place. Every
entry can be rebuilt from the snapshot, so the cache is never the only
copy of anything.
"""

import logging
import threading
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationCache:
    """
    Thread-safe memo map with whole-cache invalidation.

    generation increases on every invalidate() so callers can tell whether
    values they hold came from the current pass.
    """

    def __init__(self):
        self._entries: dict[Hashable, Any] = {}
        self._lock = threading.RLock()
        self.generation = 0
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """Return the cached value for key, computing it on first use."""
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            value = compute()
            self._entries[key] = value
            return value

    def get(self, key: Hashable, default=None):
        with self._lock:
            return self._entries.get(key, default)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self) -> int:
        """Drop every entry. Returns the new generation."""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self.generation += 1
            logger.debug(f"Cache invalidated ({dropped} entries), generation {self.generation}")
            return self.generation

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "generation": self.generation,
                "hits": self.hits,
                "misses": self.misses,
            }
