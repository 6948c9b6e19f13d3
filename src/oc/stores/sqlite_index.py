"""
SQLite-backed index store.

A single ``entries(key, value)`` table accessed through aiosqlite. Prefix
listings use keyset pagination on the primary key so each page is one
indexed range scan.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite

from oc.exceptions import TransientStoreError
from oc.logging import get_logger
from oc.stores.base import IndexStore
from oc.types import Page

logger = get_logger(__name__)


class SQLiteIndexStore(IndexStore):
    """Key-value index persisted in SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize index store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        await self._db.commit()

        logger.info("Index store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("SQLiteIndexStore not initialized. Call init() first.")
        return self._db

    def _error(self, operation: str, key: str | None, exc: Exception) -> TransientStoreError:
        return TransientStoreError(
            f"Index store {operation} failed: {exc}",
            context={"store": "index", "operation": operation, "key": key},
        )

    async def get(self, key: str) -> str | None:
        db = self._conn()
        try:
            async with db.execute("SELECT value FROM entries WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise self._error("get", key, e) from e
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        db = self._conn()
        try:
            await db.execute(
                """
                INSERT INTO entries (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            await db.commit()
        except sqlite3.Error as e:
            raise self._error("put", key, e) from e

    async def delete(self, key: str) -> None:
        db = self._conn()
        try:
            await db.execute("DELETE FROM entries WHERE key = ?", (key,))
            await db.commit()
        except sqlite3.Error as e:
            raise self._error("delete", key, e) from e

    async def list_keys(
        self, prefix: str = "", cursor: str | None = None, limit: int = 1000
    ) -> Page[str]:
        db = self._conn()
        after = cursor if cursor is not None else ""
        try:
            async with db.execute(
                """
                SELECT key FROM entries
                WHERE substr(key, 1, ?) = ? AND key > ?
                ORDER BY key
                LIMIT ?
                """,
                (len(prefix), prefix, after, limit + 1),
            ) as rows:
                keys = [row[0] for row in await rows.fetchall()]
        except sqlite3.Error as e:
            raise self._error("list", None, e) from e

        if len(keys) > limit:
            keys = keys[:limit]
            return Page(items=keys, cursor=keys[-1])
        return Page(items=keys, cursor=None)

    async def count(self, prefix: str = "") -> int:
        """Count keys starting with ``prefix``."""
        db = self._conn()
        try:
            async with db.execute(
                "SELECT COUNT(*) FROM entries WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise self._error("count", None, e) from e
        return row[0] if row else 0
