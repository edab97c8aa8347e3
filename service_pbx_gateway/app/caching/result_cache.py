"""
In-process result cache for appliance reads.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from dashboard_shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from dashboard_shared.metrics import MetricsCollector


DEFAULT_TTL_SECONDS = 60.0


@dataclass(frozen=True)
class CacheEntry:
    """Cached value and the moment it was stored."""

    value: Any
    created_at: float

    def is_stale(self, now: float, ttl: float) -> bool:
        return now - self.created_at > ttl


class ResultCache:
    """Key/value cache where the reader picks the freshness window.

    The ttl is not stored with an entry; ``get`` compares the entry's age
    against whatever ttl the caller passes and evicts stale entries.
    Concurrent writers to one key resolve last-write-wins.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.metrics = metrics
        self.logger = get_logger("pbx_gateway.result_cache")

    def get(self, key: str, ttl: Optional[float] = None) -> Optional[Any]:
        """Return the cached value, or None when absent or older than ``ttl``."""
        ttl = self.default_ttl if ttl is None else ttl
        entry = self._entries.get(key)
        if entry is None:
            self._record(key, hit=False)
            return None

        if entry.is_stale(self._clock(), ttl):
            del self._entries[key]
            self.logger.debug("Cache entry expired", key=key, ttl=ttl)
            self._record(key, hit=False)
            return None

        self._record(key, hit=True)
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, superseding any previous entry."""
        self._entries[key] = CacheEntry(value=value, created_at=self._clock())

    def invalidate(self, key: str) -> None:
        """Drop a single key if present."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        count = len(self._entries)
        self._entries.clear()
        self.logger.info("Result cache cleared", entries=count)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _record(self, key: str, hit: bool) -> None:
        if self.metrics is None:
            return
        # label by resource prefix only
        label = key.split(":", 1)[0]
        self.metrics.increment_counter("cache_hits_total" if hit else "cache_misses_total", cache_key=label)
