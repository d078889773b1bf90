# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Diff - Compare an archive's stored per-table stats with the live store.

Counts are compared first. Only tables whose counts agree are re-hashed,
and that re-hash is a full scan of the table using the same serialization
as the export writer. Expect it to be slow on large tables.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List

import structlog

from s3snap.backup.models import TableStats
from s3snap.backup.serialize import DEFAULT_PAGE_SIZE, hash_collection
from s3snap.store import CollectionAccessor

logger = structlog.get_logger()


class DiffStatus(str, Enum):
    MATCH = "match"
    COUNT_MISMATCH = "count_mismatch"
    CONTENT_MISMATCH = "content_mismatch"
    MISSING_LOCAL = "missing_local"
    MISSING_REMOTE = "missing_remote"


@dataclass(frozen=True)
class DiffRow:
    """Comparison outcome for one table."""

    table: str
    status: DiffStatus
    local_count: int
    remote_count: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


async def compute_backup_diff(
    remote_stats: Dict[str, TableStats],
    table_names: List[str],
    collections: Dict[str, CollectionAccessor],
    page_size: int = DEFAULT_PAGE_SIZE,
    include_matches: bool = False,
) -> List[DiffRow]:
    """
    Diff live tables against the stats recorded for an archive.

    Args:
        remote_stats: Per-table stats from the archive manifest
        table_names: Live table names in canonical order
        collections: Accessor per live table
        page_size: Page size used while re-hashing
        include_matches: Also return rows for tables that match exactly

    Returns:
        One row per differing table, in live table order, followed by
        tables present only in the archive
    """
    rows: List[DiffRow] = []

    for table in table_names:
        accessor = collections.get(table)
        if accessor is None:
            continue

        local_count = await accessor.count()
        remote = remote_stats.get(table)

        if remote is None:
            if local_count > 0:
                rows.append(DiffRow(table, DiffStatus.MISSING_REMOTE, local_count, 0))
            continue

        if local_count != remote.count:
            rows.append(DiffRow(table, DiffStatus.COUNT_MISMATCH, local_count, remote.count))
            continue

        logger.debug("diff_rehashing_table", table=table, count=local_count)
        local = await hash_collection(table, accessor, page_size)

        if local.hash != remote.hash:
            rows.append(DiffRow(table, DiffStatus.CONTENT_MISMATCH, local_count, remote.count))
        elif include_matches:
            rows.append(DiffRow(table, DiffStatus.MATCH, local_count, remote.count))

    live = set(table_names)
    for table, remote in remote_stats.items():
        if table not in live:
            rows.append(DiffRow(table, DiffStatus.MISSING_LOCAL, 0, remote.count))

    logger.info(
        "backup_diff_complete",
        tables=len(table_names),
        differences=sum(1 for r in rows if r.status != DiffStatus.MATCH),
    )
    return rows
