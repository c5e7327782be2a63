"""
selectstart.engine.cache — TTL Response Cache
==============================================

Keeps API responses in memory so repeated reads inside a freshness window
do not spend the request budget.  Each entry carries its own TTL because
different endpoints warrant different freshness (see
:data:`selectstart.constants.CACHE_TTLS`).

Entries are evicted lazily: a read past the TTL purges the entry and
reports it absent.  There is no background sweep and no locking; the
cache is owned by the single event loop that drives the poll cycles.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from selectstart.constants import CACHE_TTLS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    key: str
    data: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class ResponseCache:
    """In-memory key → response store with per-entry TTL.

    Usage:
        cache = ResponseCache()
        cache.put("game_info:1", info, ttl=CACHE_TTLS["game_info"])
        info = cache.get("game_info:1")     # None once expired
    """

    def __init__(
        self,
        default_ttl: float = CACHE_TTLS["default"],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Return the cached data for *key*, or ``None`` if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.data

    def put(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Store *data* under *key*.  ``None`` is never cached."""
        if data is None:
            return
        self._entries[key] = CacheEntry(
            key=key,
            data=data,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def invalidate(self, prefix: str | None = None) -> int:
        """Drop every entry (or those whose key starts with *prefix*)."""
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
        else:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            count = len(doomed)
        if count:
            logger.debug("Invalidated %d cache entries (prefix=%r)", count, prefix)
        return count

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.expired(self._clock())

    def __len__(self) -> int:
        return len(self._entries)
