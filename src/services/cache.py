from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from src.models.review import ScrapeResult

LOGGER = logging.getLogger("services.cache")


@dataclass(frozen=True)
class CacheEntry:
    value: ScrapeResult
    expires_at: float


class ResponseCache:
    """In-memory TTL cache of successful scrape results keyed by place id.

    Expiry is lazy: ``get`` and ``has`` evict a stale entry when they see it and
    ``prune`` sweeps everything for callers that want a periodic cleanup.
    """

    def __init__(
        self,
        ttl_seconds: float = 1800,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Cache TTL must be positive.")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("Cache capacity must be positive.")

        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> ScrapeResult | None:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def set(self, key: str, value: ScrapeResult) -> ScrapeResult:
        if not value.success or not value.reviews:
            raise ValueError("Only successful results with at least one review can be cached.")

        with self._lock:
            now = self._clock()
            if self.max_entries is not None and key not in self._entries and len(self._entries) >= self.max_entries:
                self._prune_locked(now)
                if len(self._entries) >= self.max_entries:
                    oldest_key = min(self._entries, key=lambda item: self._entries[item].expires_at)
                    del self._entries[oldest_key]
                    LOGGER.debug("Cache full, evicted %s", oldest_key)
            self._entries[key] = CacheEntry(value=value, expires_at=now + self.ttl_seconds)
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def prune(self) -> int:
        with self._lock:
            removed = self._prune_locked(self._clock())
        if removed:
            LOGGER.info("Pruned %s expired cache entries", removed)
        return removed

    def stats(self) -> dict[str, float | int | None]:
        with self._lock:
            return {
                "total_items": len(self._entries),
                "cache_ttl": self.ttl_seconds,
                "max_entries": self.max_entries,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def _prune_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)
