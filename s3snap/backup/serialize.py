# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Record serialization and per-collection hashing.

Records are written as compact UTF-8 JSON. Integers outside the range a
double can hold exactly are written as decimal strings so JSON readers that
parse numbers as doubles never lose precision. NaN and the infinities
have no JSON form and are written as null, so they do not survive a
round trip.
"""

import asyncio
import base64
import hashlib
import json
import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, AsyncIterator, List
from uuid import UUID

from s3snap.backup.models import TableStats
from s3snap.exceptions import CollectionReadError
from s3snap.store import CollectionAccessor, Record

MAX_SAFE_INTEGER = 2**53 - 1

DEFAULT_PAGE_SIZE = 1000


def widen(value: Any) -> Any:
    """Stringify integers a double cannot represent exactly; drop non-finite floats."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {str(k): widen(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [widen(v) for v in value]
    return value


def _default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return sorted(widen(v) for v in value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_record(record: Record) -> bytes:
    """Serialize one record to compact UTF-8 JSON bytes."""
    return json.dumps(
        widen(record),
        default=_default,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


async def iter_pages(
    table: str,
    accessor: CollectionAccessor,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> AsyncIterator[List[Record]]:
    """
    Yield the collection page by page.

    Stops on the first short page. Read failures surface as
    CollectionReadError so callers can tell them apart from write errors.
    """
    offset = 0
    while True:
        try:
            page = await accessor.fetch_page(offset, page_size)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise CollectionReadError(
                f"Failed to read {table}: {e}",
                details={"table": table, "offset": offset},
            ) from e

        if not page:
            return

        yield page

        offset += len(page)
        if len(page) < page_size:
            return

        # let other tasks run between pages
        await asyncio.sleep(0)


async def hash_collection(
    table: str,
    accessor: CollectionAccessor,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> TableStats:
    """
    Count and hash a collection exactly as the export writer does.

    This is a full table scan.
    """
    digest = hashlib.sha256()
    count = 0
    async for page in iter_pages(table, accessor, page_size):
        for record in page:
            digest.update(serialize_record(record))
            count += 1
    return TableStats(count=count, hash=digest.hexdigest())
