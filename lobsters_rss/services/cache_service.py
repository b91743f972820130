from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import aiosqlite


class CacheService:
    """
    SQLite-backed key-value store with per-entry time-to-live.

    Only whole documents are stored: ``get`` returns the full body or None,
    ``put`` overwrites, ``delete`` removes. Expired rows read as absent and
    are purged lazily.
    """

    def __init__(self, db_path: str = "data/feed_cache.db", clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        # Note: Database initialization is async. Call await initialize_db() after constructing.

    async def initialize_db(self) -> None:
        """Create the cache table and its expiry index."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS feed_cache (
                        key TEXT PRIMARY KEY,
                        body TEXT NOT NULL,
                        expires_at REAL NOT NULL,
                        stored_at REAL NOT NULL
                    );
                    """
                )
                await db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_feed_cache_expiry ON feed_cache(expires_at);"
                )
                await db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize cache database {self.db_path}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        """Return the stored body, or None if absent or expired."""
        now = self.clock()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    "SELECT body, expires_at FROM feed_cache WHERE key = ? LIMIT 1",
                    (key,),
                )
                row = await cur.fetchone()
                if row is None:
                    return None
                body, expires_at = row
                if expires_at <= now:
                    # A fresh put may land between the SELECT and this DELETE
                    await db.execute(
                        "DELETE FROM feed_cache WHERE key = ? AND expires_at <= ?",
                        (key, now),
                    )
                    await db.commit()
                    self.logger.debug(f"Cache entry {key} expired {now - expires_at:.0f}s ago")
                    return None
                return body
        except sqlite3.Error as e:
            raise StoreError(f"Cache read failed for {key}: {e}") from e

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        now = self.clock()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO feed_cache (key, body, expires_at, stored_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        body = excluded.body,
                        expires_at = excluded.expires_at,
                        stored_at = excluded.stored_at
                    """,
                    (key, value, now + ttl_seconds, now),
                )
                await db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cache write failed for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is a no-op."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM feed_cache WHERE key = ?", (key,))
                await db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cache delete failed for {key}: {e}") from e

    async def purge_expired(self) -> int:
        """Drop every expired row and return how many were removed."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    "DELETE FROM feed_cache WHERE expires_at <= ?", (self.clock(),)
                )
                await db.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Cache purge failed: {e}") from e


class MemoryCacheService:
    """In-process store with the same contract as CacheService."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def initialize_db(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        body, expires_at = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return None
        return body

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class StoreError(Exception):
    """Raised when the key-value store cannot complete an operation"""
    pass
