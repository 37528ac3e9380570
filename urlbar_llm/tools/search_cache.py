"""
Search Cache - TTL-bounded cache of search result sets.

Eviction at capacity drops the oldest *inserted* entry. Reads never change
eviction order.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..models.search import SearchResult

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    results: List[SearchResult]
    inserted_at: float


class SearchCache:
    """Insertion-ordered, size-bounded cache with a freshness window."""

    def __init__(self, max_size: int = 50, ttl_seconds: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_size = max(1, max_size)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    @staticmethod
    def make_key(query: str, limit: int) -> str:
        return f"{query}:{limit}"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[List[SearchResult]]:
        """Fresh results for ``key``, or None. Stale entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.inserted_at >= self.ttl_seconds:
            del self._entries[key]
            logger.debug(f"Search cache entry expired: {key}")
            return None
        return [r.model_copy() for r in entry.results]

    def put(self, key: str, results: List[SearchResult]) -> None:
        """Insert or replace ``key``; a replaced key becomes the newest entry."""
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Search cache evicted oldest entry: {evicted}")
        self._entries[key] = CacheEntry(
            key=key,
            results=[r.model_copy() for r in results],
            inserted_at=self._clock(),
        )

    def clear(self) -> None:
        self._entries.clear()
