# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SQLite record store backed by aiosqlite.
"""

from pathlib import Path
from typing import Dict, List

import aiosqlite
import structlog

from s3snap.store import CollectionAccessor, Record, quote_identifier

logger = structlog.get_logger()


class SQLiteCollection:
    """Paged reader for one SQLite table, ordered by primary key (or rowid)."""

    def __init__(self, db: aiosqlite.Connection, table: str, order_by: List[str]):
        self._db = db
        self.table = table
        self._order_clause = ", ".join(order_by)

    async def fetch_page(self, offset: int, limit: int) -> List[Record]:
        query = (
            f"SELECT * FROM {quote_identifier(self.table)} "
            f"ORDER BY {self._order_clause} LIMIT ? OFFSET ?"
        )
        async with self._db.execute(query, (limit, offset)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def count(self) -> int:
        async with self._db.execute(
            f"SELECT COUNT(*) FROM {quote_identifier(self.table)}"
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0


class SQLiteRecordStore:
    """
    Record store over a single SQLite database file.

    Use as an async context manager, or call open()/close() explicitly.
    """

    engine = "sqlite/aiosqlite"

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._collections: Dict[str, CollectionAccessor] = {}

    async def open(self) -> "SQLiteRecordStore":
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self.load_schema()
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "SQLiteRecordStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def load_schema(self) -> None:
        """(Re)build the table -> accessor mapping from sqlite_master."""
        if self._db is None:
            raise RuntimeError("SQLite record store is not open")

        async with self._db.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ) as cursor:
            names = [row[0] for row in await cursor.fetchall()]

        collections: Dict[str, CollectionAccessor] = {}
        for name in names:
            collections[name] = SQLiteCollection(self._db, name, await self._order_columns(name))
        self._collections = collections

        logger.debug("sqlite_schema_loaded", db_path=str(self.db_path), tables=len(names))

    async def list_table_names(self) -> List[str]:
        return sorted(self._collections)

    def collections(self) -> Dict[str, CollectionAccessor]:
        return dict(self._collections)

    async def _order_columns(self, table: str) -> List[str]:
        async with self._db.execute(f"PRAGMA table_info({quote_identifier(table)})") as cursor:
            columns = await cursor.fetchall()

        # table_info column 5 is the 1-based position in the primary key
        pk = sorted((row[5], row[1]) for row in columns if row[5])
        if pk:
            return [quote_identifier(name) for _, name in pk]
        return ["rowid"]
