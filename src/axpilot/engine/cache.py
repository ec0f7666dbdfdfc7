"""Resolution cache -- short-TTL memoisation of locator lookups.

Two independent, lock-protected TTL maps:

* node cache: locator key -> node handle (default 2 s)
* path-hint cache: locator key -> child-index path from the search root
  (default 10 s)

Both are advisory.  A node-cache hit is re-read before use and a path hint
is re-walked and re-matched before it is trusted.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Generic, Hashable, TypeVar

from axpilot.models import NODE_CACHE_TTL, PATH_HINT_TTL

logger = logging.getLogger("axpilot.engine.cache")

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe map whose entries expire *ttl* seconds after ``put``."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[V, float]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> V | None:
        """Return the value, or None on miss.  An expired entry is evicted."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if now - stored_at >= self._ttl:
                del self._entries[key]
                return None
            return value

    def put(self, key: Hashable, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def evict_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, ts) in self._entries.items() if now - ts >= self._ttl]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResolutionCache:
    """Node cache and path-hint cache owned by one service instance."""

    def __init__(
        self,
        node_ttl: float = NODE_CACHE_TTL,
        path_hint_ttl: float = PATH_HINT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.nodes: TTLCache[Any] = TTLCache(node_ttl, clock)
        self.path_hints: TTLCache[tuple[int, ...]] = TTLCache(path_hint_ttl, clock)

    def remember(self, key: Hashable, node: Any, path: tuple[int, ...] | None) -> None:
        self.nodes.put(key, node)
        if path is not None:
            self.path_hints.put(key, path)

    def sweep(self) -> int:
        """Drop expired entries from both maps.  Returns the number removed."""
        removed = self.nodes.evict_expired() + self.path_hints.evict_expired()
        if removed:
            logger.debug("Evicted %d expired cache entries", removed)
        return removed
