"""Storage layer for lanesearch.

This package contains the SQLite database used to persist the search cache
between sessions.
"""

from lanesearch.storage.database import Database

__all__ = ["Database"]
