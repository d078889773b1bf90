# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Record Store Layer - Read access to the relational store being backed up.

A store exposes its collections as an explicit name -> accessor mapping
built once from the schema when the store is opened.
"""

from typing import Any, Dict, List, Protocol

Record = Dict[str, Any]


class CollectionAccessor(Protocol):
    """Paged read access to one named collection."""

    async def fetch_page(self, offset: int, limit: int) -> List[Record]:
        """Return up to ``limit`` records starting at ``offset`` in a stable order."""
        ...

    async def count(self) -> int:
        """Return the number of records in the collection."""
        ...


class RecordStore(Protocol):
    """A relational store seen as an enumerable set of collections."""

    engine: str

    async def list_table_names(self) -> List[str]:
        """Return collection names, sorted."""
        ...

    def collections(self) -> Dict[str, CollectionAccessor]:
        """Return the accessor mapping built when the store was opened."""
        ...


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier with double quotes."""
    return '"' + name.replace('"', '""') + '"'


__all__ = [
    "CollectionAccessor",
    "Record",
    "RecordStore",
    "quote_identifier",
]
