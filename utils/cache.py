"""
Processing Cache

Bounded, thread-safe memo store for derived image buffers. Entries are keyed
by (operation, input fingerprint, parameters) and evicted least-recently-used
once the size bound is reached. Owners are expected to call ``clear()`` at
session boundaries.
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class ProcessingCache:
    """LRU cache shared by concurrent readers and writers."""

    def __init__(self, max_entries: Optional[int] = 128):
        """
        Args:
            max_entries: Maximum number of cached results (None for unbounded)
        """
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(operation: str, fingerprint: str, *params: Hashable) -> Tuple:
        return (operation, fingerprint) + tuple(params)

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            value = self._entries.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: Hashable, value: Any) -> Any:
        """Insert once: if another thread stored the key first, keep and return its value."""

        with self._lock:
            existing = self._entries.get(key, _MISSING)
            if existing is not _MISSING:
                self._entries.move_to_end(key)
                return existing

            self._entries[key] = value

            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"Evicted cache entry {evicted[0] if isinstance(evicted, tuple) else evicted}")

            return value

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for ``key`` or compute and store it.

        The computation runs outside the lock, so two threads may compute the
        same entry concurrently; only the first stored result is kept.
        None results are returned but never cached.
        """

        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        value = compute()
        if value is None:
            return None

        return self.put(key, value)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self.hits = 0
            self.misses = 0
        logger.debug(f"Cleared {count} cache entries")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'entries': len(self._entries),
                'max_entries': self.max_entries,
                'hits': self.hits,
                'misses': self.misses
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries
