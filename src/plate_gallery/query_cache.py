"""
Read-through cache for catalog queries.

Entries are keyed by tuples such as ``("palindromes", "with-collector")``.
Writers call ``invalidate`` with the tags they touched; a tag drops every
key that starts with it, so invalidating ``("collectors",)`` also clears
``("collectors", "with-stats")`` and each ``("collectors", <id>)``.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable, Dict, Hashable, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
QueryKey = Tuple[Hashable, ...]


class QueryKeys:
    palindromes: QueryKey = ("palindromes",)
    palindromes_with_collector: QueryKey = ("palindromes", "with-collector")
    collectors: QueryKey = ("collectors",)
    collectors_with_stats: QueryKey = ("collectors", "with-stats")
    leaderboard: QueryKey = ("leaderboard",)

    @staticmethod
    def collector(collector_id: str) -> QueryKey:
        return ("collectors", collector_id)


class QueryCache:
    """
    Thread-safe in-memory cache with prefix-based invalidation.

    Loaders run outside the lock. A value loaded while an invalidation was
    in flight is returned to its caller but not stored.
    """

    def __init__(self) -> None:
        self._entries: Dict[QueryKey, Any] = {}
        self._lock = Lock()
        self._generation = 0

    def get_or_load(self, key: QueryKey, loader: Callable[[], T]) -> T:
        with self._lock:
            if key in self._entries:
                return self._entries[key]
            generation = self._generation

        value = loader()
        with self._lock:
            if generation == self._generation:
                self._entries[key] = value
        return value

    def invalidate(self, *tags: QueryKey) -> int:
        """
        Drop every cached entry whose key starts with one of ``tags``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generation += 1
            stale = [key for key in self._entries if any(key[: len(tag)] == tag for tag in tags)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached queries for tags {tags}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: QueryKey) -> bool:
        with self._lock:
            return key in self._entries
