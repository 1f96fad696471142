# /chatflow/services/cache_service.py

import logging
import time
from typing import Callable, Dict, Optional

from chatflow.models.domain import CacheEntry, MatchResult
from chatflow.utils.metrics import cache_operations

# This service keeps recent match results in memory, keyed by normalized text,
# with a TTL and a size cap. Expired entries are never returned.

logger = logging.getLogger(__name__)


class ResponseCache:
    def __init__(self, max_size: int = 1000, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # dicts keep insertion order, so the first key is the oldest entry
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> Optional[MatchResult]:
        entry = self._entries.get(key)
        if entry is None:
            cache_operations.labels(operation="get", status="miss").inc()
            return None

        if self._expired(entry, self._clock()):
            del self._entries[key]
            cache_operations.labels(operation="get", status="expired").inc()
            return None

        cache_operations.labels(operation="get", status="hit").inc()
        return entry.result

    def set(self, key: str, result: MatchResult) -> None:
        if key in self._entries:
            # Re-inserting moves the key to the newest position.
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            cache_operations.labels(operation="evict", status="success").inc()

        self._entries[key] = CacheEntry(result=result, timestamp=self._clock())
        cache_operations.labels(operation="set", status="success").inc()

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were purged."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            cache_operations.labels(operation="sweep", status="success").inc(len(expired))
        logger.debug(f"Cache sweep: {len(expired)} purged, {len(self._entries)} entries remaining")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Response cache cleared")
