# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PostgreSQL record store backed by an asyncpg connection pool.
"""

from typing import Any, Dict, List

import asyncpg
import structlog

from s3snap.store import CollectionAccessor, Record, quote_identifier

logger = structlog.get_logger()

_TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1 AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_PRIMARY_KEY_QUERY = """
    SELECT a.attname
    FROM pg_index i
    JOIN pg_attribute a
      ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    WHERE i.indrelid = $1::regclass AND i.indisprimary
    ORDER BY array_position(i.indkey, a.attnum)
"""


class PostgresCollection:
    """Paged reader for one PostgreSQL table."""

    def __init__(self, pool: Any, qualified_name: str, order_by: List[str]):
        self._pool = pool
        self._qualified_name = qualified_name
        self._order_clause = ", ".join(order_by)

    async def fetch_page(self, offset: int, limit: int) -> List[Record]:
        query = (
            f"SELECT * FROM {self._qualified_name} "
            f"ORDER BY {self._order_clause} LIMIT $1 OFFSET $2"
        )
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, limit, offset)
        return [dict(row) for row in rows]

    async def count(self) -> int:
        async with self._pool.acquire() as conn:
            value = await conn.fetchval(f"SELECT COUNT(*) FROM {self._qualified_name}")
        return int(value or 0)


class PostgresRecordStore:
    """Record store over every base table in one PostgreSQL schema."""

    engine = "postgres/asyncpg"

    def __init__(self, connection_url: str, schema: str = "public", max_connections: int = 4):
        self.connection_url = connection_url
        self.schema = schema
        self.max_connections = max_connections
        self._pool: Any = None
        self._collections: Dict[str, CollectionAccessor] = {}

    async def open(self) -> "PostgresRecordStore":
        self._pool = await asyncpg.create_pool(
            self.connection_url, min_size=1, max_size=self.max_connections
        )
        await self.load_schema()
        return self

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresRecordStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def load_schema(self) -> None:
        if self._pool is None:
            raise RuntimeError("PostgreSQL record store is not open")

        collections: Dict[str, CollectionAccessor] = {}
        async with self._pool.acquire() as conn:
            names = [row["table_name"] for row in await conn.fetch(_TABLES_QUERY, self.schema)]
            for name in names:
                qualified = f"{quote_identifier(self.schema)}.{quote_identifier(name)}"
                pk = [row["attname"] for row in await conn.fetch(_PRIMARY_KEY_QUERY, qualified)]
                order_by = [quote_identifier(col) for col in pk] or ["ctid"]
                collections[name] = PostgresCollection(self._pool, qualified, order_by)

        self._collections = collections
        logger.debug("postgres_schema_loaded", schema=self.schema, tables=len(collections))

    async def list_table_names(self) -> List[str]:
        return sorted(self._collections)

    def collections(self) -> Dict[str, CollectionAccessor]:
        return dict(self._collections)
