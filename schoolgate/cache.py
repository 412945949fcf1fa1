"""
In-memory query result cache.

Views cache tenant-scoped query results under tuple keys such as
``("messages", 42, 7)``. The cache is purged completely on sign-out so
that rows from one school can never be shown to the next user on the
same device.

Invariants:
    - clear() removes every entry
    - invalidate() matches on key prefix
    - Keys are tuples; the first element names the resource
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]


@dataclass
class CacheEntry:
    """A cached value plus its staleness flag."""
    value: Any
    stale: bool = False


@dataclass
class QueryCache:
    """Tuple-keyed cache of query results.

    Attributes:
        entries: Cached results by key
        generation: Bumped on clear(); in-flight fetches started under an
            older generation are not written back
    """

    entries: Dict[CacheKey, CacheEntry] = field(default_factory=dict)
    generation: int = 0

    def get(self, key: CacheKey) -> Any | None:
        """Get a fresh cached value, or None if missing or stale."""
        entry = self.entries.get(key)
        if entry is None or entry.stale:
            return None
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        self.entries[key] = CacheEntry(value=value)

    def invalidate(self, *prefix: Hashable) -> int:
        """Mark entries whose key starts with prefix as stale.

        Args:
            *prefix: Leading key elements to match

        Returns:
            Number of entries invalidated
        """
        count = 0
        for key, entry in self.entries.items():
            if key[: len(prefix)] == prefix:
                entry.stale = True
                count += 1
        logger.debug("Cache invalidated", extra={"prefix": prefix, "count": count})
        return count

    def clear(self) -> None:
        """Drop every entry."""
        count = len(self.entries)
        self.entries.clear()
        self.generation += 1
        logger.info("Query cache cleared", extra={"count": count})

    async def fetch(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value or load and cache it.

        Args:
            key: Cache key
            loader: Coroutine factory producing the authoritative value

        Returns:
            The cached or freshly loaded value
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        generation = self.generation
        value = await loader()
        # A clear() while loading means the result may belong to a dead session
        if generation == self.generation:
            self.set(key, value)
        return value

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries
