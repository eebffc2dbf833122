"""Time-bounded in-memory cache for entities fetched from the gateway."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from relay.logging_config import get_logger

logger = get_logger("cache_service")

MEMBERS_KEY = "members"
LABELS_KEY = "labels"
DEFAULT_TTL_SECONDS = 10 * 60


@dataclass
class CacheEntry:
    value: Any
    time: float


class CacheStore:
    """Key/value store whose entries are valid for ``ttl_seconds`` after being set.

    Freshness is always checked on read; ``sweep`` only reclaims memory.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value if it is still fresh."""
        if not self.is_fresh(key):
            return None
        return self._entries[key].value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, time=self._clock())

    def is_fresh(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        return self._clock() - entry.time < self.ttl_seconds

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        """Remove expired entries. Returns number of removed keys."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.time > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} entries: {expired}")
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


async def run_cache_sweeper(cache: CacheStore, interval_seconds: Optional[float] = None) -> None:
    """Sweep the cache on a fixed interval until cancelled."""
    interval = interval_seconds if interval_seconds is not None else cache.ttl_seconds
    interval = max(interval, 1.0)
    while True:
        try:
            await asyncio.sleep(interval)
            cache.sweep()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Cache sweep failed", extra={"context": {"error": str(exc)}})
