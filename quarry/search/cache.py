# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""In-memory cache of search predicates and exact match counts.

Entries are keyed by (datasource, table, raw value, mode) and hold the WHERE
clause, its bound parameters and the COUNT(*) result, so paging through a
search result does not recount on every page.

Eviction:
- TTL: an entry older than ``ttl_minutes`` is never returned.
- Idle: an entry not read for ``idle_timeout_minutes`` is never returned.
- Capacity: a put into a full cache first purges invalid entries, then drops
  the oldest quarter by creation time.
- Invalidation: every write to a table must call ``invalidate_table``.

A per-table generation counter guards the window between computing a count
and storing it: a put carrying a generation taken before an invalidation is
discarded, so no count can outlive a write it did not see.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple, Optional

from quarry.core.config import CacheConfig

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    """Identity of a cached search."""
    datasource: str
    table: str
    raw_value: str
    mode: str


@dataclass
class CacheEntry:
    """Cached predicate and count. Only ``last_accessed_at`` changes after creation."""
    where_clause: str
    params: tuple[Any, ...]
    match_count: int
    created_at: float
    last_accessed_at: float

    def is_valid(self, now: float, ttl: float, idle_timeout: float) -> bool:
        return (now - self.created_at) < ttl and (now - self.last_accessed_at) < idle_timeout

    def bindings(self) -> dict[str, Any]:
        """Parameters keyed by their ``p<N>`` names."""
        return {f"p{i}": value for i, value in enumerate(self.params)}


# (global epoch, per-table generation)
Generation = tuple[int, int]


class SearchCache:
    """Thread-safe search cache with an explicit sweep lifecycle."""

    def __init__(
        self,
        ttl_minutes: float = 30.0,
        idle_timeout_minutes: float = 10.0,
        capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self.ttl_minutes = ttl_minutes
        self.idle_timeout_minutes = idle_timeout_minutes
        self.capacity = capacity
        self._ttl = ttl_minutes * 60
        self._idle = idle_timeout_minutes * 60
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._generations: dict[tuple[str, str], int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: CacheConfig) -> "SearchCache":
        return cls(
            ttl_minutes=config.ttl_minutes,
            idle_timeout_minutes=config.idle_timeout_minutes,
            capacity=config.capacity,
        )

    @staticmethod
    def key(datasource: str, table: str, raw_value: str, mode: Any) -> CacheKey:
        mode_name = getattr(mode, "value", mode)
        return CacheKey(datasource, table, raw_value, str(mode_name))

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return a live entry and refresh its access time; drop it if expired or idle."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(now, self._ttl, self._idle):
                del self._entries[key]
                return None
            entry.last_accessed_at = now
            return entry

    def generation(self, datasource: str, table: str) -> Generation:
        """Token to pass to ``put`` for a value computed from the table's current state."""
        with self._lock:
            return self._epoch, self._generations.get((datasource, table), 0)

    def put(
        self,
        key: CacheKey,
        where_clause: str,
        params: tuple[Any, ...] | list[Any],
        match_count: int,
        generation: Optional[Generation] = None,
    ) -> bool:
        """Store an entry (last writer wins).

        Returns:
            False if the table was invalidated after ``generation`` was taken,
            in which case nothing is stored.
        """
        now = self._clock()
        entry = CacheEntry(
            where_clause=where_clause,
            params=tuple(params),
            match_count=match_count,
            created_at=now,
            last_accessed_at=now,
        )
        with self._lock:
            if generation is not None:
                current = (self._epoch, self._generations.get((key.datasource, key.table), 0))
                if generation != current:
                    logger.debug(f"Discarding stale cache put for {key.datasource}.{key.table}")
                    return False
            if key not in self._entries and len(self._entries) >= self.capacity:
                self._make_room(now)
            self._entries[key] = entry
        return True

    def _make_room(self, now: float) -> None:
        """Purge invalid entries; if still full, drop the oldest quarter. Caller holds the lock."""
        invalid = [k for k, e in self._entries.items() if not e.is_valid(now, self._ttl, self._idle)]
        for k in invalid:
            del self._entries[k]
        if len(self._entries) < self.capacity:
            return
        evict_count = max(1, len(self._entries) // 4)
        oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:evict_count]
        for k, _ in oldest:
            del self._entries[k]
        logger.debug(f"Search cache full, evicted {evict_count} oldest entries")

    def invalidate_table(self, datasource: str, table: str) -> int:
        """Drop every entry for exactly (datasource, table). Call after any write to it.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generations[(datasource, table)] = self._generations.get((datasource, table), 0) + 1
            doomed = [k for k in self._entries if k.datasource == datasource and k.table == table]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cached searches for {datasource}.{table}")
        return len(doomed)

    def invalidate_all(self) -> int:
        """Drop every entry."""
        with self._lock:
            self._epoch += 1
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Search cache cleared ({count} entries)")
        return count

    def sweep(self) -> int:
        """Remove expired and idle entries.

        The map is snapshotted under the lock and judged outside it; an entry is
        only removed if it has not been replaced in the meantime.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            snapshot = list(self._entries.items())

        stale = [(k, e) for k, e in snapshot if not e.is_valid(now, self._ttl, self._idle)]

        removed = 0
        for k, e in stale:
            with self._lock:
                if self._entries.get(k) is e:
                    del self._entries[k]
                    removed += 1

        if removed:
            logger.debug(f"Search cache sweep removed {removed} entries")
        return removed

    def stats(self) -> dict[str, Any]:
        """Entry count, limits and how many entries are currently expired."""
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
        expired = sum(1 for e in entries if not e.is_valid(now, self._ttl, self._idle))
        return {
            "entries": len(entries),
            "capacity": self.capacity,
            "ttl_minutes": self.ttl_minutes,
            "idle_timeout_minutes": self.idle_timeout_minutes,
            "expired_count": expired,
        }

    async def start_sweep_task(self, interval_seconds: float = 300) -> None:
        """Start the periodic sweep background task.

        Args:
            interval_seconds: Interval between sweeps
        """
        if self._sweep_task is not None:
            return

        async def sweep_loop():
            while True:
                try:
                    await asyncio.sleep(interval_seconds)
                    self.sweep()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Error in cache sweep task: {e}")

        self._sweep_task = asyncio.create_task(sweep_loop())
        logger.info(f"Started search cache sweep task (interval: {interval_seconds}s)")

    async def stop_sweep_task(self) -> None:
        """Stop the periodic sweep background task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("Stopped search cache sweep task")
