"""Database layer for lanesearch using SQLite.

The search cache is stored one row per ``(query, source_id)`` pair.  Each row
holds the whole serialized cache entry, so a reader sees either the complete
old entry or the complete new one, never a partially written entry.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional, Tuple


class Database:
    """SQLite database manager for lanesearch."""

    def __init__(self, db_path: str = "lanesearch.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (``":memory:"`` is not
                supported since every call opens its own connection)
        """
        self.db_path = db_path
        self.logger = logging.getLogger(self.__class__.__name__)
        parent = Path(db_path).parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            SQLite connection with row factory set
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            self.logger.error("Database error: %s", e)
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS search_cache (
                    query TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (query, source_id)
                )
            """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_search_cache_updated
                ON search_cache(updated_at)
            """
            )

            self.logger.debug("Database schema initialized at %s", self.db_path)

    def cache_put(self, query: str, source_id: str, payload: str, updated_at: float) -> None:
        """
        Store one cache entry, replacing any previous row for the pair.

        Args:
            query: Normalized query (cache key)
            source_id: Source lane identifier
            payload: JSON serialized entry
            updated_at: POSIX timestamp of the entry's last update
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO search_cache (query, source_id, payload, updated_at)
                VALUES (?, ?, ?, ?)
            """,
                (query, source_id, payload, updated_at),
            )
            self.logger.debug("Stored cache entry for %s/%s", query, source_id)

    def cache_get(self, query: str) -> Dict[str, Tuple[str, float]]:
        """
        Retrieve every source entry stored for a query.

        Args:
            query: Normalized query (cache key)

        Returns:
            Mapping of source_id to ``(payload, updated_at)``
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT source_id, payload, updated_at
                FROM search_cache
                WHERE query = ?
            """,
                (query,),
            )
            return {row["source_id"]: (row["payload"], row["updated_at"]) for row in cursor}

    def cache_delete(self, query: Optional[str] = None) -> int:
        """
        Delete cache entries.

        Args:
            query: Query whose entries to delete (None = clear all)

        Returns:
            Number of rows deleted
        """
        with self._get_connection() as conn:
            if query is None:
                cursor = conn.execute("DELETE FROM search_cache")
            else:
                cursor = conn.execute("DELETE FROM search_cache WHERE query = ?", (query,))
            deleted = cursor.rowcount
            self.logger.info("Deleted %d cache entries", deleted)
            return deleted

    def cleanup_expired_cache(self, cutoff: float) -> int:
        """
        Remove cache entries last updated before ``cutoff``.

        Args:
            cutoff: POSIX timestamp; older rows are deleted

        Returns:
            Number of entries removed
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM search_cache WHERE updated_at < ?",
                (cutoff,),
            )
            deleted = cursor.rowcount
            self.logger.info("Cleaned up %d expired cache entries", deleted)
            return deleted

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with entry, query and size statistics
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            stats: Dict[str, Any] = {}

            cursor.execute("SELECT COUNT(*) AS count FROM search_cache")
            stats["cache_entries"] = cursor.fetchone()["count"]

            cursor.execute("SELECT COUNT(DISTINCT query) AS count FROM search_cache")
            stats["cached_queries"] = cursor.fetchone()["count"]

            cursor.execute(
                """
                SELECT source_id, COUNT(*) AS count
                FROM search_cache
                GROUP BY source_id
            """
            )
            stats["entries_by_source"] = {row["source_id"]: row["count"] for row in cursor.fetchall()}

        stats["database_size_bytes"] = Path(self.db_path).stat().st_size
        return stats
