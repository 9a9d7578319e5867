"""Caching layer for lanesearch.

This module provides the per-query search cache.  For every normalized query
and source it keeps one :class:`CacheEntry` with the accumulated results, the
number already shown and the pagination cursor.  It is the only system of
record for cursors and ``displayed_count``.

Writes are merged in memory right away and persisted in the background, so
callers never wait on storage and a failed write never fails a search.
"""

from __future__ import annotations

import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from lanesearch.core.data_models import CacheEntry, Cursor, ResultItem
from lanesearch.storage.database import Database

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24

_UNSET: Any = object()

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheBackend(Protocol):
    """Persistence contract used by :class:`CacheStore`."""

    name: str

    async def load(self, query: str) -> Dict[str, CacheEntry]: ...

    async def save(self, query: str, source_id: str, entry: CacheEntry) -> None: ...

    async def delete(self, query: Optional[str] = None) -> int: ...

    async def sweep(self, cutoff: datetime) -> int: ...


class MemoryCacheBackend:
    """In-process backend.  Entries are kept serialized, one record each."""

    name = "memory"

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], Dict[str, Any]] = {}

    async def load(self, query: str) -> Dict[str, CacheEntry]:
        return {
            source_id: CacheEntry.from_dict(record)
            for (q, source_id), record in list(self._records.items())
            if q == query
        }

    async def save(self, query: str, source_id: str, entry: CacheEntry) -> None:
        self._records[(query, source_id)] = entry.to_dict()

    async def delete(self, query: Optional[str] = None) -> int:
        if query is None:
            deleted = len(self._records)
            self._records.clear()
            return deleted
        keys = [key for key in self._records if key[0] == query]
        for key in keys:
            del self._records[key]
        return len(keys)

    async def sweep(self, cutoff: datetime) -> int:
        expired = [
            key
            for key, record in self._records.items()
            if CacheEntry.from_dict(record).updated_at < cutoff
        ]
        for key in expired:
            del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class SQLiteCacheBackend:
    """Backend storing entries in the ``search_cache`` table.

    ``sqlite3`` blocks, so every database call runs in a worker thread.  A
    single worker keeps writes for the same key in the order they were
    scheduled.
    """

    name = "sqlite"

    def __init__(self, db: Optional[Database] = None, db_path: str = "lanesearch.db") -> None:
        self._db = db
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lanesearch-cache")
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def db(self) -> Database:
        """Lazy-load database connection."""
        if self._db is None:
            self._db = Database(self._db_path)
        return self._db

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(self.db, *args))

    async def load(self, query: str) -> Dict[str, CacheEntry]:
        rows = await self._run(Database.cache_get, query)
        entries: Dict[str, CacheEntry] = {}
        for source_id, (payload, _updated_at) in rows.items():
            try:
                entries[source_id] = CacheEntry.from_dict(json.loads(payload))
            except (ValueError, KeyError, TypeError) as e:
                self.logger.warning("Discarding unreadable cache entry %s/%s: %s", query, source_id, e)
        return entries

    async def save(self, query: str, source_id: str, entry: CacheEntry) -> None:
        payload = json.dumps(entry.to_dict(), ensure_ascii=False)
        await self._run(Database.cache_put, query, source_id, payload, entry.updated_at.timestamp())

    async def delete(self, query: Optional[str] = None) -> int:
        return await self._run(Database.cache_delete, query)

    async def sweep(self, cutoff: datetime) -> int:
        return await self._run(Database.cleanup_expired_cache, cutoff.timestamp())

    def close(self) -> None:
        """Stop the worker thread once pending calls are done."""
        self._executor.shutdown(wait=True)


class CacheStore:
    """TTL-bounded store of per-(query, source) cache entries."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        ttl: timedelta = timedelta(hours=DEFAULT_TTL_HOURS),
        clock: Clock = _utcnow,
    ) -> None:
        """Initialize the cache store.

        Args:
            backend: Persistence backend (in-memory if not provided)
            ttl: Maximum age after which an entry is treated as absent
            clock: Callable returning the current aware datetime
        """
        self.backend: CacheBackend = backend if backend is not None else MemoryCacheBackend()
        self.ttl = ttl
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)
        # Entries merged in this process whose write has not landed yet.
        self._pending: Dict[Tuple[str, str], CacheEntry] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._failed_writes = 0

    def is_expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.updated_at > self.ttl

    async def get(self, query: str) -> Dict[str, CacheEntry]:
        """Get the live cache entries for a query.

        Args:
            query: Normalized query (cache key)

        Returns:
            Mapping of source_id to a copy of its entry; empty when the query
            has no live entries
        """
        try:
            entries = await self.backend.load(query)
        except Exception as e:
            self.logger.warning("Cache load failed for '%s': %s", query, e)
            entries = {}

        for (q, source_id), entry in self._pending.items():
            if q == query:
                entries[source_id] = entry

        live = {
            source_id: _copy_entry(entry)
            for source_id, entry in entries.items()
            if not self.is_expired(entry)
        }
        if live:
            self._hits += 1
            self.logger.debug("Cache hit for '%s': %s", query, sorted(live))
        else:
            self._misses += 1
            self.logger.debug("Cache miss for '%s'", query)
        return live

    async def get_entry(self, query: str, source_id: str) -> Optional[CacheEntry]:
        pending = self._pending.get((query, source_id))
        if pending is not None:
            return None if self.is_expired(pending) else _copy_entry(pending)
        return (await self.get(query)).get(source_id)

    async def update(
        self,
        query: str,
        source_id: str,
        *,
        results: Optional[Iterable[ResultItem]] = None,
        displayed_count: Optional[int] = None,
        shown: Optional[Iterable[str]] = None,
        cursor: Optional[Cursor] = _UNSET,
        has_more: Optional[bool] = None,
    ) -> CacheEntry:
        """Merge fields into an entry and persist it in the background.

        Results whose canonical URL is already stored are ignored, so
        repeating an update is harmless.  ``displayed_count`` never moves
        backwards and never exceeds the number of results.

        ``shown`` lists canonical URLs the caller has just displayed.  They
        are moved, in their stored order, to the end of the shown prefix of
        the merged entry, so the boundary stays correct even when another
        session appended results since the caller last read the entry.

        Returns:
            A copy of the merged entry
        """
        key = (query, source_id)
        current = self._pending.get(key)
        if current is None:
            try:
                current = (await self.backend.load(query)).get(source_id)
            except Exception as e:
                self.logger.warning("Cache load failed for '%s': %s", query, e)
                current = None
            # A concurrent update may have landed while loading.
            current = self._pending.get(key, current)

        if current is None or self.is_expired(current):
            merged = CacheEntry()
        else:
            merged = _copy_entry(current)

        if results is not None:
            known = merged.urls
            for item in results:
                if item.canonical_url not in known:
                    known.add(item.canonical_url)
                    merged.results.append(item)

        if shown is not None:
            _mark_shown(merged, set(shown))
        if displayed_count is not None:
            merged.displayed_count = max(merged.displayed_count, displayed_count)
        merged.displayed_count = min(merged.displayed_count, len(merged.results))

        if cursor is not _UNSET:
            merged.pagination_cursor = cursor
        if has_more is not None:
            merged.has_more_upstream = has_more
        merged.updated_at = self.clock()

        self._pending[key] = merged
        self._schedule_persist(query, source_id, merged)
        return _copy_entry(merged)

    def _schedule_persist(self, query: str, source_id: str, entry: CacheEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(query, source_id, entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _persist(self, query: str, source_id: str, entry: CacheEntry) -> None:
        key = (query, source_id)
        try:
            await self.backend.save(query, source_id, entry)
        except Exception as e:
            self._failed_writes += 1
            self.logger.warning("Cache write failed for %s/%s: %s", query, source_id, e)
            return

        self._writes += 1
        # Only drop the overlay if no newer merge replaced it meanwhile.
        if self._pending.get(key) is entry:
            del self._pending[key]

    async def flush(self) -> None:
        """Wait for every pending background write."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        """Flush pending writes and release the backend."""
        await self.flush()
        close = getattr(self.backend, "close", None)
        if close is not None:
            close()

    async def sweep_expired(self) -> int:
        """Remove entries older than the TTL horizon.

        Returns:
            Number of persisted entries removed
        """
        cutoff = self.clock() - self.ttl
        for key in [k for k, entry in self._pending.items() if entry.updated_at < cutoff]:
            del self._pending[key]

        try:
            deleted = await self.backend.sweep(cutoff)
        except Exception as e:
            self.logger.warning("Cache sweep failed: %s", e)
            return 0

        self.logger.info("Swept %d expired cache entries", deleted)
        return deleted

    async def delete(self, query: str) -> int:
        """Delete every entry of a query."""
        for key in [k for k in self._pending if k[0] == query]:
            del self._pending[key]
        await self.flush()
        deleted = await self.backend.delete(query)
        self.logger.debug("Deleted %d cache entries for '%s'", deleted, query)
        return deleted

    async def clear(self) -> int:
        """Clear all cache entries."""
        self._pending.clear()
        await self.flush()
        deleted = await self.backend.delete()
        self.logger.info("Cleared all cache entries: %d", deleted)
        return deleted

    @property
    def pending_writes(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0

        return {
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate_percent": round(hit_rate, 2),
            "writes": self._writes,
            "failed_writes": self._failed_writes,
            "pending_writes": self.pending_writes,
            "ttl_hours": self.ttl.total_seconds() / 3600,
            "backend": self.backend.name,
        }


def _mark_shown(entry: CacheEntry, urls: Set[str]) -> None:
    head = entry.results[: entry.displayed_count]
    tail = entry.results[entry.displayed_count :]
    moved = [item for item in tail if item.canonical_url in urls]
    if not moved:
        return
    rest = [item for item in tail if item.canonical_url not in urls]
    entry.results = head + moved + rest
    entry.displayed_count += len(moved)


def _copy_entry(entry: CacheEntry) -> CacheEntry:
    return CacheEntry(
        results=list(entry.results),
        displayed_count=entry.displayed_count,
        pagination_cursor=entry.pagination_cursor,
        has_more_upstream=entry.has_more_upstream,
        updated_at=entry.updated_at,
    )


def create_cache_store(
    backend: str = "sqlite",
    path: str = "lanesearch.db",
    ttl_hours: float = DEFAULT_TTL_HOURS,
    clock: Clock = _utcnow,
) -> CacheStore:
    """Build a :class:`CacheStore` from configuration values.

    Raises:
        ValueError: If ``backend`` is not ``"sqlite"`` or ``"memory"``.
    """
    if backend == "memory":
        store_backend: CacheBackend = MemoryCacheBackend()
    elif backend == "sqlite":
        store_backend = SQLiteCacheBackend(db_path=path)
    else:
        raise ValueError(f"Unknown cache backend: {backend}")
    return CacheStore(store_backend, ttl=timedelta(hours=ttl_hours), clock=clock)


def entries_summary(entries: Dict[str, CacheEntry]) -> List[Dict[str, Any]]:
    """Compact per-source description of cache entries (for logs and the CLI)."""
    return [
        {
            "source_id": source_id,
            "results": len(entry.results),
            "displayed_count": entry.displayed_count,
            "has_more_upstream": entry.has_more_upstream,
            "cursor": entry.pagination_cursor.to_dict() if entry.pagination_cursor else None,
            "updated_at": entry.updated_at.isoformat(),
        }
        for source_id, entry in sorted(entries.items())
    ]
