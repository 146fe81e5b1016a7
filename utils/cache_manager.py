"""
In-process cache for read-side snapshots
Entries expire after a TTL; writers invalidate by key prefix.
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Union

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("cache")

# Default TTL values (in seconds)
DEFAULT_TTL = {
    "access": 30,  # entitlement decisions
    "user_courses": 30,
    "course_content": 300,
}

_MISSING = object()


class LRUCache:
    """Thread-safe LRU cache with per-entry expiry"""

    def __init__(self, max_size: int = 1000, clock=time.monotonic):
        self.cache: OrderedDict = OrderedDict()
        self.max_size = max_size
        self.clock = clock
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Get value from cache"""
        with self._lock:
            entry = self.cache.pop(key, _MISSING)
            if entry is _MISSING:
                self.misses += 1
                return default

            value, expiry = entry
            if expiry is not None and self.clock() >= expiry:
                self.misses += 1
                return default

            # Move to end (most recently used)
            self.cache[key] = entry
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache with optional TTL"""
        with self._lock:
            expiry = self.clock() + ttl if ttl else None
            self.cache.pop(key, None)
            self.cache[key] = (value, expiry)

            while len(self.cache) > self.max_size:
                self.cache.popitem(last=False)
                self.evictions += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self.cache.pop(key, _MISSING) is not _MISSING

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix; returns how many went"""
        with self._lock:
            doomed = [key for key in self.cache if key.startswith(prefix)]
            for key in doomed:
                del self.cache[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} entries for {prefix}", category=LogCategory.SYSTEM)
        return len(doomed)

    def clear(self):
        with self._lock:
            self.cache.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "size": len(self.cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": f"{hit_rate:.2f}%",
        }


def cache_key_for_user(user_id: Union[str, Any], prefix: str, *parts: Any) -> str:
    return ":".join([f"user:{user_id}", prefix, *(str(p) for p in parts)])


# Global cache shared by the request handlers
snapshot_cache = LRUCache(max_size=10000)


def invalidate_user_cache(user_id: Union[str, Any]) -> int:
    return snapshot_cache.invalidate_prefix(f"user:{user_id}:")
