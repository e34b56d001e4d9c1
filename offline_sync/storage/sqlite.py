"""
SQLite storage medium.

Keeps every collection as a row in a single ``kv_store`` table, which makes
the local state a single portable file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageIOError
from .base import StorageMedium

logger = logging.getLogger(__name__)


class SQLiteMedium(StorageMedium):
    """Medium backed by an aiosqlite connection.

    Use ``await SQLiteMedium.create(path)`` to get an initialized instance.
    """

    def __init__(self, db_path: str | Path = ":memory:", quota_bytes: int | None = None) -> None:
        super().__init__(quota_bytes)
        self.db_path = db_path
        self.conn: Any = None  # aiosqlite.Connection
        self._initialized = False

    @classmethod
    async def create(
        cls,
        db_path: str | Path = ":memory:",
        quota_bytes: int | None = None,
    ) -> SQLiteMedium:
        """Create and initialize a SQLite medium."""
        medium = cls(db_path, quota_bytes)
        await medium.initialize()
        return medium

    async def initialize(self) -> None:
        """Open the connection and create the table."""
        if self._initialized:
            return

        try:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(str(self.db_path))
            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT (datetime('now'))
                )
            """)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite medium initialized: {self.db_path}")
        except (aiosqlite.Error, OSError) as e:
            raise StorageIOError("initialize", str(self.db_path), e) from e

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    async def get_item(self, key: str) -> str | None:
        await self.initialize()
        try:
            async with self.conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row else None
        except aiosqlite.Error as e:
            raise StorageIOError("read", key, e) from e

    async def set_item(self, key: str, value: str) -> None:
        await self.initialize()
        await self._check_quota(key, value)
        try:
            await self.conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("write", key, e) from e

    async def remove_item(self, key: str) -> bool:
        await self.initialize()
        try:
            cursor = await self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await self.conn.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error as e:
            raise StorageIOError("remove", key, e) from e

    async def usage_bytes(self, exclude_key: str | None = None) -> int:
        await self.initialize()
        try:
            async with self.conn.execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv_store "
                "WHERE key != ?",
                (exclude_key or "",),
            ) as cursor:
                row = await cursor.fetchone()
            return int(row[0]) if row else 0
        except aiosqlite.Error as e:
            raise StorageIOError("usage", str(self.db_path), e) from e
