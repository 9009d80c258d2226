"""In-memory cache for capability results.

Entries expire after a fixed lifetime and the least recently used entry
is evicted once the cache is full. Keys are digests of the capability
and its normalized invocation parameters, so parameter order does not
matter.
"""

import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from truth_engine.config.settings import settings


class CapabilityCache:
    """TTL cache with LRU eviction.

    Not thread-safe; it is only touched from the event loop.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = (
            settings.capability_cache_max_entries if max_entries is None else max_entries
        )
        self.ttl_seconds = ttl_seconds or settings.capability_cache_ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def make_key(capability: str, parameters: dict[str, Any]) -> str:
        payload = json.dumps(
            {"capability": capability, "params": parameters},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @property
    def enabled(self) -> bool:
        return self.max_entries > 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self.enabled:
            return
        self._entries[key] = (value, self._clock() + (ttl or self.ttl_seconds))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        self._entries.clear()

    def get_statistics(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)
