"""Response Cache: memory LRU in front of an optional persistent store.

Keys are ``hash_payload`` digests of a payload's semantic fields, so the
persistent tier never sees request text. Lookups go memory first, then the
store; a persistent hit is promoted into memory. Entries past ``max_age`` are
treated as absent and deleted lazily.

Writes land in memory synchronously and are mirrored to the store in the
background. A store that is missing or failing degrades the cache to
memory-only; it never fails the call that produced the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable

from synthgate.core.metrics import CACHE_LOOKUPS
from synthgate.core.security import hash_payload
from synthgate.gateway.types import CacheEntry, GenerationPayload, ResultData

logger = logging.getLogger(__name__)


class ResponseCache:
    def __init__(
        self,
        store=None,
        *,
        max_entries: int = 100,
        persistent_max_entries: int = 200,
        max_age: float = 7 * 24 * 60 * 60,
        compaction_interval: float = 600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_entries = max_entries
        self.persistent_max_entries = persistent_max_entries
        self.max_age = max_age
        self.compaction_interval = compaction_interval
        self._clock = clock

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self._compaction_task: asyncio.Task | None = None

    @staticmethod
    def key_for(payload: GenerationPayload) -> str:
        return hash_payload(payload.cache_fields())

    # --- Lookup / insert ---

    async def get(self, payload: GenerationPayload, memory_only: bool = False) -> CacheEntry | None:
        key = self.key_for(payload)
        now = self._clock()

        async with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if entry.is_expired(now, self.max_age):
                    del self._memory[key]
                else:
                    self._memory.move_to_end(key)
                    CACHE_LOOKUPS.labels(tier="memory", result="hit").inc()
                    return entry

        if memory_only or self.store is None:
            CACHE_LOOKUPS.labels(tier="memory", result="miss").inc()
            return None

        try:
            entry = await self.store.get(key)
        except Exception:
            logger.warning("Persistent cache lookup failed, treating as miss", exc_info=True)
            CACHE_LOOKUPS.labels(tier="persistent", result="error").inc()
            return None

        if entry is None:
            CACHE_LOOKUPS.labels(tier="persistent", result="miss").inc()
            return None

        if entry.is_expired(now, self.max_age):
            CACHE_LOOKUPS.labels(tier="persistent", result="expired").inc()
            self._spawn(self._delete(key))
            return None

        async with self._lock:
            self._insert(entry)
        CACHE_LOOKUPS.labels(tier="persistent", result="hit").inc()
        return entry

    async def put(self, payload: GenerationPayload, result: ResultData) -> CacheEntry:
        entry = CacheEntry(key=self.key_for(payload), result=result, created_at=self._clock())
        async with self._lock:
            self._insert(entry)
        if self.store is not None:
            self._spawn(self._mirror(entry))
        return entry

    def _insert(self, entry: CacheEntry) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self.max_entries:
            self._memory.popitem(last=False)

    async def clear(self) -> None:
        async with self._lock:
            self._memory.clear()

    # --- Persistent tier maintenance ---

    async def warm(self, limit: int | None = None) -> int:
        """Load the newest unexpired persistent entries into memory."""
        if self.store is None:
            return 0
        cutoff = self._clock() - self.max_age
        try:
            entries = await self.store.recent(limit or self.max_entries, newer_than=cutoff)
        except Exception:
            logger.warning("Cache warm-up failed", exc_info=True)
            return 0

        async with self._lock:
            # oldest first so the newest ends up most recently used
            for entry in reversed(entries):
                self._insert(entry)
        logger.info("Cache warmed with %d entries", len(entries))
        return len(entries)

    async def compact(self) -> int:
        """Drop expired persistent entries, then the oldest beyond capacity."""
        now = self._clock()
        async with self._lock:
            for key in [k for k, e in self._memory.items() if e.is_expired(now, self.max_age)]:
                del self._memory[key]

        if self.store is None:
            return 0
        try:
            removed = await self.store.delete_older_than(now - self.max_age)
            excess = await self.store.count() - self.persistent_max_entries
            if excess > 0:
                removed += await self.store.delete_oldest(excess)
        except Exception:
            logger.warning("Cache compaction failed", exc_info=True)
            return 0

        if removed:
            logger.info("Cache compaction removed %d entries", removed)
        return removed

    async def start(self) -> None:
        """Compact once, warm memory, then keep compacting in the background."""
        if self.store is None:
            return
        await self.compact()
        await self.warm()
        if self.compaction_interval > 0 and self._compaction_task is None:
            self._compaction_task = asyncio.create_task(self._compaction_loop())

    async def close(self) -> None:
        """Stop compaction and wait for in-flight mirror writes."""
        if self._compaction_task is not None:
            self._compaction_task.cancel()
            try:
                await self._compaction_task
            except asyncio.CancelledError:
                pass
            self._compaction_task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _compaction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.compaction_interval)
            await self.compact()

    async def _mirror(self, entry: CacheEntry) -> None:
        try:
            await self.store.put(entry)
        except Exception:
            logger.warning("Failed to mirror cache entry to persistent store", exc_info=True)

    async def _delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception:
            logger.warning("Failed to purge expired cache entry", exc_info=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def get_stats(self) -> dict:
        return {
            "memory_entries": len(self._memory),
            "memory_capacity": self.max_entries,
            "persistent_capacity": self.persistent_max_entries if self.store is not None else 0,
            "pending_writes": len(self._pending),
        }
