"""In-memory TTL cache for exchange lookups."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from utils.logger import get_logger

logger = get_logger("cache")

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    expires_at: float


class CacheManager:
    """Key/value cache where every entry expires after its TTL.

    Expired entries are dropped lazily on access.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=now,
            expires_at=now + (ttl if ttl else self._default_ttl),
        )

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        entry = self._live_entry(key)
        return entry.data if entry is not None else None

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_pattern(self, pattern: Union[str, re.Pattern]) -> int:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        now = self._clock()
        return {
            "size": len(self._entries),
            "entries": [
                {
                    "key": key,
                    "age": round(now - entry.timestamp, 3),
                    "ttl": round(entry.expires_at - now, 3),
                }
                for key, entry in self._entries.items()
            ],
        }


cache_manager = CacheManager()


async def cached_fetch(
    key: str,
    fetcher: Callable[[], Awaitable[T]],
    ttl: Optional[float] = None,
    cache: Optional[CacheManager] = None,
) -> T:
    """Return the cached value for *key*, or await *fetcher* and cache it."""
    store = cache or cache_manager
    if store.has(key):
        logger.debug("Cache hit", key=key)
        return store.get(key)

    logger.debug("Cache miss", key=key)
    data = await fetcher()
    store.set(key, data, ttl)
    return data
