"""Read-through cache for similarity queries.

Keyed by (event_id, threshold, limit). Any embedding regeneration or
cross-reference write calls ``invalidate()``, which drops everything.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Hashable


class QueryCache:
    """Small LRU cache with whole-cache invalidation."""

    def __init__(self, max_entries: int = 256) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()
        self.generation = 0
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            return None

    def put(self, key: Hashable, value: Any, generation: int | None = None) -> None:
        """Store ``value`` unless the cache was invalidated since ``generation`` was read."""
        with self._lock:
            if generation is not None and generation != self.generation:
                return
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self) -> None:
        with self._lock:
            self._entries.clear()
            self.generation += 1

    def __len__(self) -> int:
        return len(self._entries)
