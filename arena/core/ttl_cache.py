"""
arena/core/ttl_cache.py
Bounded, TTL-keyed in-process cache.

Entries expire after ``ttl_seconds`` as measured by the injected clock, and
the least recently used entry is evicted once ``maxsize`` is reached. Tests
drive expiry with a FixedClock instead of sleeping.
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, Hashable, Optional, Tuple

from arena.core.clock import Clock, SystemClock

_MISSING = object()


class TTLCache:

    def __init__(self, maxsize: int = 256, ttl_seconds: float = 30.0, clock: Optional[Clock] = None):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.maxsize = maxsize
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or SystemClock()
        self._entries: "OrderedDict[Hashable, Tuple[datetime, Any]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self.clock.now() >= expires_at:
            del self._entries[key]
            return default
        self._entries.move_to_end(key)
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self.clock.now() + self.ttl, value)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self.clock.now()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "maxsize": self.maxsize,
            "ttl_seconds": self.ttl.total_seconds(),
        }
