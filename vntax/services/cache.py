"""
Caching Layer - TTL cache for tax registry lookups
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class Cache:
    """In-memory key/value cache with per-entry expiry"""

    def __init__(self, ttl: int = 3600, max_entries: int = 10000):
        """
        Initialize cache

        Args:
            ttl: Time to live in seconds (default: 1 hour)
            max_entries: oldest entries are evicted beyond this size
        """
        self.entries: Dict[str, Tuple[float, Any]] = {}
        self.ttl = ttl
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache, dropping it if expired"""
        entry = self.entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self.entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value in cache"""
        ttl = self.ttl if ttl is None else ttl
        self.entries.pop(key, None)
        self.entries[key] = (time.monotonic() + ttl, value)
        while len(self.entries) > self.max_entries:
            oldest = next(iter(self.entries))
            del self.entries[oldest]
            logger.debug(f"Evicted cache entry {oldest}")

    def clear(self) -> None:
        """Clear all cache entries"""
        self.entries.clear()
        self.hits = 0
        self.misses = 0

    def size(self) -> int:
        return len(self.entries)


class LookupCache:
    """Registry records keyed by cleaned tax code"""

    prefix = "mst"

    def __init__(self, cache: Cache):
        self.cache = cache

    def _key(self, tax_code: str) -> str:
        return f"{self.prefix}:{tax_code}"

    def get(self, tax_code: str) -> Optional[Any]:
        return self.cache.get(self._key(tax_code))

    def set(self, tax_code: str, record: Any) -> None:
        self.cache.set(self._key(tax_code), record)


# Global cache instance
_global_cache: Optional[Cache] = None


def get_cache() -> Cache:
    """Get global cache instance"""
    global _global_cache
    if _global_cache is None:
        _global_cache = Cache(ttl=get_settings().cache_ttl)
    return _global_cache


def get_lookup_cache() -> LookupCache:
    """Get tax code lookup cache backed by the global cache"""
    return LookupCache(get_cache())
