"""
Bounded, expiring result cache with hit tracking.

Benefits:
- Cost savings: don't call the LLM for documents we've already summarized
- Speed: cached summaries come back without any network round-trip
- Debugging: list_entries() shows what is cached and how often it is used

Every entry lives in one mapping stored under `namespace` in the storage
backend.  Reads expire entries lazily (TTL measured from creation) and update
hit count and last access; writes evict the least recently accessed entry
once the cache is full.

The cache fails open: a storage error is logged and treated as a miss, so a
broken persistence layer never stops an analysis.
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Callable, Generic, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .schemas import CacheEntry, CacheStats
from .storage import StorageBackend, MemoryStorage
from .logger import get_module_logger

logger = get_module_logger("cache")

T = TypeVar("T")

DEFAULT_CAPACITY = 100
DEFAULT_TTL = timedelta(hours=24)
DEFAULT_NAMESPACE = "legal_scanner_cache"


def _seconds(ttl: Union[timedelta, float]) -> float:
    return ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)


class ResultCache(Generic[T]):
    """LRU + TTL cache on top of a StorageBackend."""

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        capacity: int = DEFAULT_CAPACITY,
        ttl: Union[timedelta, float] = DEFAULT_TTL,
        model: Optional[Type[BaseModel]] = None,
        namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the cache.

        Args:
            storage: Persistence backend (defaults to in-memory storage)
            capacity: Maximum number of entries
            ttl: Default time-to-live, measured from entry creation
            model: Pydantic model for payloads; stored as JSON, revived on read
            namespace: Storage key holding the whole cache
            clock: Time source in epoch seconds
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.storage = storage if storage is not None else MemoryStorage()
        self.capacity = capacity
        self.ttl = ttl
        self.model = model
        self.namespace = namespace
        self.clock = clock
        # Serializes read-modify-write cycles across coroutines
        self._lock = asyncio.Lock()

    # --- Serialization ---

    async def _load(self) -> dict[str, CacheEntry]:
        result = await self.storage.get([self.namespace])
        raw = result.get(self.namespace) or {}
        entries = {}
        for key, data in raw.items():
            try:
                entries[key] = CacheEntry.model_validate({**data, "key": key})
            except (ValidationError, TypeError) as e:
                logger.warning(f"Dropping malformed cache entry '{key}': {e}")
        return entries

    async def _save(self, entries: dict[str, CacheEntry]) -> None:
        await self.storage.set({
            self.namespace: {
                key: entry.model_dump(exclude={"key"})
                for key, entry in entries.items()
            }
        })

    def _dump_payload(self, payload: T) -> Any:
        if isinstance(payload, BaseModel):
            return payload.model_dump(mode="json")
        return payload

    def _load_payload(self, data: Any) -> T:
        if self.model is not None:
            return self.model.model_validate(data)
        return data

    def _is_expired(self, entry: CacheEntry, ttl: Union[timedelta, float, None]) -> bool:
        limit = _seconds(ttl if ttl is not None else self.ttl)
        return self.clock() - entry.created_at > limit

    # --- Public API ---

    async def get(self, key: str, ttl: Union[timedelta, float, None] = None) -> Optional[T]:
        """
        Retrieve a cached payload.

        Args:
            key: Cache key (the document URL for summaries)
            ttl: Override of the default time-to-live for this read

        Returns:
            The payload, or None if absent, expired or unreadable
        """
        async with self._lock:
            try:
                entries = await self._load()
                entry = entries.get(key)
                if entry is None:
                    logger.debug(f"Cache miss for key: {key}")
                    return None

                if self._is_expired(entry, ttl):
                    del entries[key]
                    await self._save(entries)
                    logger.info(f"Cache entry expired for key: {key}")
                    return None

                entry.hit_count += 1
                entry.last_accessed_at = self.clock()
                await self._save(entries)

                logger.info(f"Cache hit for key: {key} (hits={entry.hit_count})")
                return self._load_payload(entry.payload)
            except Exception as e:
                logger.warning(f"Cache get failed for '{key}', treating as miss: {e}")
                return None

    async def contains(self, key: str, ttl: Union[timedelta, float, None] = None) -> bool:
        """True if a live entry exists; unlike get() this leaves hit counts alone."""
        try:
            entry = (await self._load()).get(key)
        except Exception as e:
            logger.warning(f"Cache lookup failed for '{key}': {e}")
            return False
        return entry is not None and not self._is_expired(entry, ttl)

    async def set(self, key: str, payload: T) -> None:
        """Store a payload, evicting the least recently accessed entry when full."""
        async with self._lock:
            try:
                entries = await self._load()

                if key not in entries and len(entries) >= self.capacity:
                    # min() keeps the first of equal timestamps, i.e. insertion order
                    lru_key = min(entries, key=lambda k: entries[k].last_accessed_at)
                    del entries[lru_key]
                    logger.debug(f"Evicted least recently used key: {lru_key}")

                now = self.clock()
                entries[key] = CacheEntry(
                    key=key,
                    payload=self._dump_payload(payload),
                    created_at=now,
                    last_accessed_at=now,
                    hit_count=0
                )
                await self._save(entries)
                logger.debug(f"Cached payload with key: {key}")
            except Exception as e:
                logger.warning(f"Cache set failed for '{key}': {e}")

    async def delete(self, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        async with self._lock:
            try:
                entries = await self._load()
                if key not in entries:
                    return False
                del entries[key]
                await self._save(entries)
                logger.info(f"Deleted cache for key: {key}")
                return True
            except Exception as e:
                logger.warning(f"Cache delete failed for '{key}': {e}")
                return False

    async def clear(self) -> None:
        """Remove every entry."""
        async with self._lock:
            try:
                await self.storage.remove([self.namespace])
                logger.info("Cleared result cache")
            except Exception as e:
                logger.warning(f"Cache clear failed: {e}")

    async def stats(self) -> CacheStats:
        try:
            entries = await self._load()
        except Exception as e:
            logger.warning(f"Cache stats failed: {e}")
            return CacheStats()

        return CacheStats(
            total_entries=len(entries),
            total_hits=sum(entry.hit_count for entry in entries.values()),
            oldest_entry=min((entry.created_at for entry in entries.values()), default=None)
        )

    async def list_entries(self) -> list[dict]:
        """List cached entries without their payloads."""
        try:
            entries = await self._load()
        except Exception as e:
            logger.warning(f"Cache listing failed: {e}")
            return []

        return [
            {
                "key": entry.key,
                "created_at": entry.created_at,
                "last_accessed_at": entry.last_accessed_at,
                "hit_count": entry.hit_count,
            }
            for entry in entries.values()
        ]
