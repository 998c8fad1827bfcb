"""
In-process TTL cache for market rates.

Entries expire lazily on read; cleanup_expired() drops the rest in bulk. The time
source is injectable so rate-expiry behaviour can be tested without sleeping.
"""

import logging
import time
from typing import Any, Callable, Dict, NamedTuple, Optional

logger = logging.getLogger(__name__)


class _CacheEntry(NamedTuple):
    value: Any
    stored_at: float
    expires_at: float


class SimpleCache:
    """Key/value store where every entry carries its own expiry"""

    def __init__(self, default_ttl: int = 300, time_func: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._time = time_func
        self._entries: Dict[str, _CacheEntry] = {}
        self.stats = dict.fromkeys(("hits", "misses", "sets", "deletes", "evictions"), 0)

    def _is_live(self, entry: _CacheEntry, now: float) -> bool:
        return entry.expires_at > now

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.stats["misses"] += 1
            return default

        if not self._is_live(entry, self._time()):
            self._entries.pop(key, None)
            self.stats["evictions"] += 1
            self.stats["misses"] += 1
            logger.debug(f"CACHE_EXPIRED: {key}")
            return default

        self.stats["hits"] += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        now = self._time()
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = _CacheEntry(value=value, stored_at=now, expires_at=now + lifetime)
        self.stats["sets"] += 1

    def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self.stats["deletes"] += 1
        return True

    def clear(self) -> None:
        self.stats["deletes"] += len(self._entries)
        self._entries = {}

    def cleanup_expired(self) -> int:
        """Drop every expired entry; returns how many went"""
        now = self._time()
        stale = [key for key, entry in self._entries.items() if not self._is_live(entry, now)]
        for key in stale:
            del self._entries[key]
        self.stats["evictions"] += len(stale)
        return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.stats["hits"] + self.stats["misses"]
        hit_rate = round(self.stats["hits"] * 100 / lookups, 2) if lookups else 0
        return {
            **self.stats,
            "total_requests": lookups,
            "hit_rate_percent": hit_rate,
            "cache_size": len(self._entries),
        }
