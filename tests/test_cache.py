"""Tests for the search cache."""

import logging
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import FakeClock, make_items
from lanesearch.core.cache import (
    CacheStore,
    MemoryCacheBackend,
    SQLiteCacheBackend,
    create_cache_store,
    entries_summary,
)
from lanesearch.core.data_models import OpaqueToken, PageOffset
from lanesearch.storage.database import Database


class FailingBackend(MemoryCacheBackend):
    """Backend whose writes always fail."""

    name = "failing"

    async def save(self, query, source_id, entry):
        raise OSError("disk full")


class TestCacheStore:
    """Tests for CacheStore with the in-memory backend."""

    @pytest.mark.asyncio
    async def test_get_missing(self, memory_cache):
        """An unknown query has no entries."""
        assert await memory_cache.get("karina") == {}

    @pytest.mark.asyncio
    async def test_update_and_get(self, memory_cache):
        """Merged fields are visible right away."""
        await memory_cache.update(
            "karina",
            "youtube",
            results=make_items("youtube", 0, 10),
            displayed_count=6,
            cursor=OpaqueToken("CAoQAA"),
            has_more=True,
        )
        entries = await memory_cache.get("karina")
        entry = entries["youtube"]
        assert len(entry.results) == 10
        assert entry.displayed_count == 6
        assert entry.pagination_cursor == OpaqueToken("CAoQAA")
        assert entry.has_more_upstream is True

    @pytest.mark.asyncio
    async def test_read_your_writes_before_persist(self, memory_cache):
        """Reads see a merge whose background write has not run yet."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 3))
        assert len(memory_cache.backend) == 0
        entry = await memory_cache.get_entry("karina", "heye")
        assert entry is not None and len(entry.results) == 3

        await memory_cache.flush()
        assert len(memory_cache.backend) == 1

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, memory_cache):
        """Repeating an update does not duplicate results."""
        items = make_items("heye", 0, 5)
        await memory_cache.update("karina", "heye", results=items, displayed_count=3)
        entry = await memory_cache.update("karina", "heye", results=items, displayed_count=3)
        assert len(entry.results) == 5
        assert entry.displayed_count == 3

    @pytest.mark.asyncio
    async def test_results_append_in_order(self, memory_cache):
        """New results are appended after existing ones, duplicates skipped."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 3))
        entry = await memory_cache.update("karina", "heye", results=make_items("heye", 2, 3))
        assert [i.title for i in entry.results] == [f"heye item {n}" for n in range(5)]

    @pytest.mark.asyncio
    async def test_displayed_count_monotonic(self, memory_cache):
        """The shown boundary never moves backwards."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 10), displayed_count=8)
        entry = await memory_cache.update("karina", "heye", displayed_count=2)
        assert entry.displayed_count == 8

    @pytest.mark.asyncio
    async def test_shown_items_join_the_prefix(self, memory_cache):
        """Items marked shown move to the shown prefix; the rest stay unseen."""
        await memory_cache.update(
            "karina", "heye", results=make_items("heye", 0, 4), displayed_count=1
        )
        await memory_cache.update("karina", "heye", results=make_items("heye", 4, 4))
        shown = [item.canonical_url for item in make_items("heye", 5, 2)]

        entry = await memory_cache.update("karina", "heye", shown=shown)

        assert entry.displayed_count == 3
        assert [i.title for i in entry.results[:3]] == ["heye item 0", "heye item 5", "heye item 6"]
        assert [i.title for i in entry.unseen] == [f"heye item {n}" for n in (1, 2, 3, 4, 7)]

        again = await memory_cache.update("karina", "heye", shown=shown)
        assert again.displayed_count == 3
        assert again.results == entry.results

    @pytest.mark.asyncio
    async def test_displayed_count_clamped(self, memory_cache):
        """The shown boundary never exceeds the stored results."""
        entry = await memory_cache.update(
            "karina", "heye", results=make_items("heye", 0, 4), displayed_count=9
        )
        assert entry.displayed_count == 4

    @pytest.mark.asyncio
    async def test_cursor_untouched_unless_given(self, memory_cache):
        """Only an explicit cursor argument replaces the stored cursor."""
        await memory_cache.update("karina", "heye", cursor=PageOffset(2, 0))
        entry = await memory_cache.update("karina", "heye", displayed_count=0)
        assert entry.pagination_cursor == PageOffset(2, 0)
        entry = await memory_cache.update("karina", "heye", cursor=None)
        assert entry.pagination_cursor is None

    @pytest.mark.asyncio
    async def test_returned_entries_are_copies(self, memory_cache):
        """Mutating a returned entry does not change the cache."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 3))
        entry = await memory_cache.get_entry("karina", "heye")
        entry.results.clear()
        entry.displayed_count = 3
        again = await memory_cache.get_entry("karina", "heye")
        assert len(again.results) == 3
        assert again.displayed_count == 0

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, memory_cache, clock):
        """Entries older than the TTL are treated as absent."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 3))
        await memory_cache.flush()
        clock.advance(hours=23)
        assert "heye" in await memory_cache.get("karina")
        clock.advance(hours=2)
        assert await memory_cache.get("karina") == {}
        assert await memory_cache.get_entry("karina", "heye") is None

    @pytest.mark.asyncio
    async def test_update_after_expiry_starts_fresh(self, memory_cache, clock):
        """Merging into an expired entry discards the old contents."""
        await memory_cache.update(
            "karina", "heye", results=make_items("heye", 0, 6), displayed_count=6, has_more=False
        )
        clock.advance(hours=30)
        entry = await memory_cache.update("karina", "heye", results=make_items("heye", 10, 2))
        assert [i.title for i in entry.results] == ["heye item 10", "heye item 11"]
        assert entry.displayed_count == 0
        assert entry.has_more_upstream is True
        assert entry.updated_at == clock.now

    @pytest.mark.asyncio
    async def test_entries_are_per_source(self, memory_cache):
        """Each source has its own entry under one query."""
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 2))
        await memory_cache.update("karina", "selca", results=make_items("selca", 0, 4))
        entries = await memory_cache.get("karina")
        assert {k: len(v.results) for k, v in entries.items()} == {"heye": 2, "selca": 4}

    @pytest.mark.asyncio
    async def test_failed_write_does_not_raise(self, clock, caplog):
        """A failing backend is logged and counted, never raised."""
        cache = CacheStore(FailingBackend(), clock=clock)
        with caplog.at_level(logging.WARNING):
            entry = await cache.update("karina", "heye", results=make_items("heye", 0, 2))
            await cache.flush()

        assert len(entry.results) == 2
        assert cache.get_stats()["failed_writes"] == 1
        assert "Cache write failed" in caplog.text
        # The merge stays readable from memory.
        assert len((await cache.get_entry("karina", "heye")).results) == 2

    @pytest.mark.asyncio
    async def test_sweep_expired(self, memory_cache, clock):
        """Sweeping removes only entries past the TTL."""
        await memory_cache.update("old", "heye", results=make_items("heye", 0, 1))
        clock.advance(hours=20)
        await memory_cache.update("new", "heye", results=make_items("heye", 0, 1))
        await memory_cache.flush()
        clock.advance(hours=5)

        assert await memory_cache.sweep_expired() == 1
        assert len(memory_cache.backend) == 1

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, memory_cache):
        """Entries can be deleted per query or all at once."""
        await memory_cache.update("a", "heye", results=make_items("heye", 0, 1))
        await memory_cache.update("a", "selca", results=make_items("selca", 0, 1))
        await memory_cache.update("b", "heye", results=make_items("heye", 0, 1))

        assert await memory_cache.delete("a") == 2
        assert await memory_cache.get("a") == {}
        assert await memory_cache.clear() == 1
        assert await memory_cache.get("b") == {}

    @pytest.mark.asyncio
    async def test_stats(self, memory_cache):
        """Hits, misses and writes are counted."""
        await memory_cache.get("karina")
        await memory_cache.update("karina", "heye", results=make_items("heye", 0, 1))
        await memory_cache.flush()
        await memory_cache.get("karina")

        stats = memory_cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["writes"] == 1
        assert stats["pending_writes"] == 0
        assert stats["ttl_hours"] == 24
        assert stats["backend"] == "memory"


class TestSQLiteCacheBackend:
    """Tests for the SQLite backed cache."""

    @pytest.mark.asyncio
    async def test_persists_across_stores(self, tmp_path, clock):
        """Entries written by one store are read by another."""
        db_path = str(tmp_path / "cache.db")
        first = CacheStore(SQLiteCacheBackend(db_path=db_path), clock=clock)
        await first.update(
            "카리나",
            "youtube",
            results=make_items("youtube", 0, 7),
            displayed_count=6,
            cursor=OpaqueToken("next"),
        )
        await first.flush()

        second = CacheStore(SQLiteCacheBackend(db_path=db_path), clock=clock)
        entry = await second.get_entry("카리나", "youtube")
        assert entry is not None
        assert len(entry.results) == 7
        assert entry.displayed_count == 6
        assert entry.pagination_cursor == OpaqueToken("next")

    @pytest.mark.asyncio
    async def test_database_calls_leave_the_event_loop(self, tmp_path, clock):
        """Blocking sqlite calls run in the worker thread, not the loop thread."""
        cache = CacheStore(SQLiteCacheBackend(db_path=str(tmp_path / "cache.db")), clock=clock)
        original = Database.cache_put
        threads = []

        def recording_put(db, *args):
            threads.append(threading.get_ident())
            return original(db, *args)

        with patch.object(Database, "cache_put", recording_put):
            await cache.update("karina", "heye", results=make_items("heye", 0, 3))
            await cache.flush()

        assert threads
        assert threading.get_ident() not in threads
        assert len((await cache.get("karina"))["heye"].results) == 3
        await cache.close()

    @pytest.mark.asyncio
    async def test_sweep(self, tmp_path, clock):
        """Sweeping deletes expired rows."""
        cache = CacheStore(SQLiteCacheBackend(db_path=str(tmp_path / "cache.db")), clock=clock)
        await cache.update("karina", "heye", results=make_items("heye", 0, 1))
        await cache.flush()
        clock.advance(hours=25)
        assert await cache.sweep_expired() == 1

    @pytest.mark.asyncio
    async def test_unreadable_entry_skipped(self, tmp_path, clock, caplog):
        """A corrupt row is ignored with a warning."""
        db = Database(str(tmp_path / "cache.db"))
        db.cache_put("karina", "heye", "{not json", clock.now.timestamp())
        cache = CacheStore(SQLiteCacheBackend(db=db), clock=clock)

        with caplog.at_level(logging.WARNING):
            assert await cache.get("karina") == {}
        assert "Discarding unreadable cache entry" in caplog.text


class TestCacheFactory:
    """Tests for create_cache_store and entries_summary."""

    def test_memory(self):
        """The memory backend can be selected by name."""
        cache = create_cache_store("memory", ttl_hours=1)
        assert isinstance(cache.backend, MemoryCacheBackend)
        assert cache.ttl == timedelta(hours=1)

    def test_sqlite(self, tmp_path):
        """The SQLite backend uses the configured path."""
        cache = create_cache_store("sqlite", path=str(tmp_path / "c.db"))
        assert isinstance(cache.backend, SQLiteCacheBackend)

    def test_unknown_backend(self):
        """Unknown backends are rejected."""
        with pytest.raises(ValueError, match="Unknown cache backend"):
            create_cache_store("redis")

    @pytest.mark.asyncio
    async def test_entries_summary(self):
        """The summary lists one row per source, sorted."""
        cache = CacheStore(MemoryCacheBackend(), clock=FakeClock())
        await cache.update("q", "selca", results=make_items("selca", 0, 2), displayed_count=1)
        await cache.update("q", "heye", results=make_items("heye", 0, 3))
        summary = entries_summary(await cache.get("q"))
        assert [row["source_id"] for row in summary] == ["heye", "selca"]
        assert summary[1]["displayed_count"] == 1
        assert summary[1]["results"] == 2
