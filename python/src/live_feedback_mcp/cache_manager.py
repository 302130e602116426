"""
Content Cache for the feedback engine

Maps (provider id, content hash) to a previously computed ProviderResult so
that identical input is analyzed once, across every session.

Key features:
- Strict LRU eviction with a fixed capacity
- Thread-safe: detached late completions and thread-pool providers write here
- No time-based expiry; any edit changes the content hash
- Manual invalidation per provider for rule updates
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any

from .common_types import ProviderResult
from .errors import CacheUnavailable


@dataclass
class CacheEntry:
    """A cached provider result."""
    provider_id: str
    content_hash: str
    result: ProviderResult
    inserted_at: float


@dataclass
class CacheStats:
    """Statistics about cache usage."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ContentCache:
    """
    LRU cache of provider results keyed by provider id and content hash.

    A capacity of 0 disables the cache: get() raises CacheUnavailable and
    put() is a no-op, so callers degrade to always-miss.
    """

    def __init__(self, max_entries: int = 2048):
        self.max_entries = max_entries
        self._entries: OrderedDict[tuple[str, str], CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.max_entries > 0

    def get(self, provider_id: str, content_hash: str) -> ProviderResult | None:
        """
        Return the cached result, or None on a miss.

        Raises:
            CacheUnavailable: The cache is disabled
        """
        if not self.enabled:
            raise CacheUnavailable("content cache disabled")

        key = (provider_id, content_hash)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            # Move to end (most recently used)
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return replace(entry.result, from_cache=True, elapsed_ms=0.0)

    def put(self, provider_id: str, content_hash: str, result: ProviderResult) -> None:
        """Store a successful result. Failed results are never cached."""
        if not self.enabled or not result.success:
            return

        key = (provider_id, content_hash)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(
                provider_id=provider_id,
                content_hash=content_hash,
                result=replace(result, from_cache=False),
                inserted_at=time.time(),
            )
            self.stats.writes += 1

            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def invalidate(self, provider_id: str | None = None) -> int:
        """
        Drop entries for one provider (or all of them).

        Returns:
            Number of entries removed
        """
        with self._lock:
            if provider_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed

            keys = [k for k in self._entries if k[0] == provider_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._entries

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics as a dictionary."""
        return {
            "enabled": self.enabled,
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "writes": self.stats.writes,
            "evictions": self.stats.evictions,
            "hit_rate": self.stats.hit_rate,
        }
