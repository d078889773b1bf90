# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Export Writer - Stream every collection into one JSON document.

Document layout (compact, no newlines):

    {"version":"1.0","createdAt":...,"engine":...,"tables":[...],
     "data":{"<table>":[<record>,...],...}}

``tables`` in the header lists every collection; collections that turn out
empty or unreadable are still present in ``data`` as ``[]``. Memory use is
bounded by one page of records regardless of store size.
"""

import asyncio
import hashlib
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Callable, Dict, List, Mapping

import aiofiles
import structlog

from s3snap.backup.models import (
    ARCHIVE_FORMAT_VERSION,
    ProgressEvent,
    ProgressStep,
    TableStats,
)
from s3snap.backup.serialize import DEFAULT_PAGE_SIZE, iter_pages, serialize_record
from s3snap.exceptions import CollectionReadError, ExportError
from s3snap.store import CollectionAccessor

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ExportResult:
    """Collections that produced records, with their stats."""

    tables: List[str] = field(default_factory=list)
    stats: Dict[str, TableStats] = field(default_factory=dict)


def build_header_prefix(table_names: List[str], engine: str, created_at: datetime) -> bytes:
    """Header object with its closing brace replaced by the opening of ``data``."""
    header = json.dumps(
        {
            "version": ARCHIVE_FORMAT_VERSION,
            "createdAt": created_at.isoformat().replace("+00:00", "Z"),
            "engine": engine,
            "tables": table_names,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return (header[:-1] + ',"data":{').encode("utf-8")


async def write_export(
    path: Path,
    table_names: List[str],
    collections: Mapping[str, CollectionAccessor],
    engine: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    on_progress: ProgressCallback | None = None,
    created_at: datetime | None = None,
) -> ExportResult:
    """
    Write the export document for ``table_names`` to ``path``.

    A collection that fails to read is written as ``[]`` and skipped;
    a failing write aborts the export.

    Raises:
        ExportError: If the document cannot be written or synced to disk.
    """
    result = ExportResult()
    created_at = created_at or datetime.now(UTC)
    total = len(table_names)

    try:
        async with aiofiles.open(path, "wb") as f:
            await f.write(build_header_prefix(table_names, engine, created_at))

            for index, name in enumerate(table_names):
                if on_progress:
                    progress = round(10 + (index / total) * 50) if total else 60
                    on_progress(
                        ProgressEvent(ProgressStep.EXPORTING, progress, f"Exporting {name}...")
                    )

                if index > 0:
                    await f.write(b",")
                await f.write(json.dumps(name, ensure_ascii=False).encode("utf-8") + b":")

                stats = await _write_table(f, name, collections.get(name), page_size)
                if stats is not None:
                    result.tables.append(name)
                    result.stats[name] = stats

            await f.write(b"}}")
            await f.flush()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, os.fsync, f.fileno())

    except OSError as e:
        raise ExportError(
            f"Failed to write export document: {e}",
            details={"path": str(path)},
        ) from e

    logger.info(
        "export_written",
        path=str(path),
        tables=total,
        non_empty=len(result.tables),
    )
    return result


async def _write_table(
    f,
    name: str,
    accessor: CollectionAccessor | None,
    page_size: int,
) -> TableStats | None:
    """Stream one collection as a JSON array; returns None when nothing was exported."""
    if accessor is None:
        await f.write(b"[]")
        logger.warning("export_accessor_missing", table=name)
        return None

    start = await f.tell()
    digest = hashlib.sha256()
    count = 0

    try:
        await f.write(b"[")
        async for page in iter_pages(name, accessor, page_size):
            chunk = bytearray()
            for record in page:
                row = serialize_record(record)
                if count:
                    chunk += b","
                chunk += row
                digest.update(row)
                count += 1
            await f.write(bytes(chunk))
            logger.debug("export_page_written", table=name, records=len(page), total=count)
        await f.write(b"]")

    except (CollectionReadError, TypeError, ValueError) as e:
        # rewind over the partial array so the document stays valid
        await f.seek(start)
        await f.truncate()
        await f.write(b"[]")
        logger.warning("export_table_skipped", table=name, error=str(e))
        return None

    if count == 0:
        logger.warning("export_table_empty", table=name)
        return None

    logger.debug("export_table_written", table=name, count=count)
    return TableStats(count=count, hash=digest.hexdigest())
