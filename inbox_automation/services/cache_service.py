"""
In-process TTL cache for mail-provider reads.

Four namespaces, each with its own TTL and capacity. Reads never refresh an
entry's position; when a namespace is full the oldest tenth by write time is
evicted. Nothing here is persisted.
"""

import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from inbox_automation.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

EVICTION_FRACTION = 0.1


class CacheNamespace(str, Enum):
    MESSAGES = "messages"
    ANALYTICS = "analytics"
    COUNTS = "counts"
    LABELS = "labels"


@dataclass(frozen=True, slots=True)
class NamespaceConfig:
    ttl_seconds: float
    max_entries: int


DEFAULT_CACHE_CONFIG: dict[CacheNamespace, NamespaceConfig] = {
    CacheNamespace.MESSAGES: NamespaceConfig(300, 1000),
    CacheNamespace.ANALYTICS: NamespaceConfig(3600, 1000),
    CacheNamespace.COUNTS: NamespaceConfig(300, 1000),
    CacheNamespace.LABELS: NamespaceConfig(3600, 1000),
}


@dataclass(slots=True)
class CacheEntry:
    value: Any
    written_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.written_at >= self.ttl_seconds


class MailCacheService:
    """
    Namespace-partitioned TTL cache shared by every mailbox gateway in the process.

    Keys are owner-scoped (see the ``*_key`` helpers) so one instance can
    serve all owners.
    """

    def __init__(
        self,
        config: dict[CacheNamespace, NamespaceConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = {**DEFAULT_CACHE_CONFIG, **(config or {})}
        self._clock = clock
        self._stores: dict[CacheNamespace, dict[str, CacheEntry]] = {
            namespace: {} for namespace in CacheNamespace
        }
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, namespace: CacheNamespace, key: str) -> Any | None:
        """Return the cached value or None on a miss; expired entries are dropped."""
        store = self._stores[namespace]
        entry = store.get(key)

        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del store[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(self, namespace: CacheNamespace, key: str, value: Any) -> None:
        store = self._stores[namespace]
        config = self._config[namespace]

        # Re-inserting keeps dict order equal to write order
        store.pop(key, None)
        if len(store) >= config.max_entries:
            self._evict_oldest(namespace)

        store[key] = CacheEntry(value=value, written_at=self._clock(), ttl_seconds=config.ttl_seconds)

    async def get_or_load(
        self, namespace: CacheNamespace, key: str, loader: Callable[[], Awaitable[T]]
    ) -> T:
        """Serve from cache, otherwise await ``loader`` and cache its result."""
        cached = self.get(namespace, key)
        if cached is not None:
            return cached

        value = await loader()
        self.set(namespace, key, value)
        return value

    def _evict_oldest(self, namespace: CacheNamespace) -> None:
        store = self._stores[namespace]
        config = self._config[namespace]
        evict_count = max(1, math.floor(config.max_entries * EVICTION_FRACTION))

        oldest = sorted(store.items(), key=lambda item: item[1].written_at)[:evict_count]
        for key, _ in oldest:
            del store[key]

        logger.debug(
            "Cache namespace at capacity, evicted oldest entries",
            namespace=namespace.value,
            evicted=len(oldest),
        )

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, namespace: CacheNamespace) -> None:
        self._stores[namespace].clear()

    def invalidate_all(self) -> None:
        for store in self._stores.values():
            store.clear()
        logger.info("Mail cache cleared")

    def sweep_expired(self) -> int:
        """Drop TTL-expired entries in every namespace; returns how many were removed."""
        now = self._clock()
        removed = 0

        for store in self._stores.values():
            expired = [key for key, entry in store.items() if entry.is_expired(now)]
            for key in expired:
                del store[key]
            removed += len(expired)

        logger.debug("Cache sweep completed", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def size(self, namespace: CacheNamespace) -> int:
        return len(self._stores[namespace])

    def stats(self) -> dict[str, Any]:
        total_lookups = self._hits + self._misses
        sizes = {namespace.value: len(store) for namespace, store in self._stores.items()}
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total_lookups, 4) if total_lookups else 0.0,
            "sizes": sizes,
            "total_size": sum(sizes.values()),
        }

    # ------------------------------------------------------------------
    # Key generators
    # ------------------------------------------------------------------

    @staticmethod
    def messages_key(owner_id: str, query: str, max_results: int) -> str:
        return f"messages:{owner_id}:{query}:{max_results}"

    @staticmethod
    def analytics_key(owner_id: str, days: int) -> str:
        return f"analytics:{owner_id}:{days}"

    @staticmethod
    def counts_key(owner_id: str) -> str:
        return f"counts:{owner_id}:current"

    @staticmethod
    def labels_key(owner_id: str) -> str:
        return f"labels:{owner_id}:all"
