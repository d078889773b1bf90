# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup data structures shared by the export pipeline, the job manager
and the remote store.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List

ARCHIVE_FORMAT_VERSION = "1.0"


class ProgressStep(str, Enum):
    """Pipeline step reported through progress callbacks."""

    INIT = "init"
    EXPORTING = "exporting"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    CLEANUP = "cleanup"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification (progress is 0-100)."""

    step: ProgressStep
    progress: int
    message: str


@dataclass(frozen=True)
class TableStats:
    """Record count and content hash of one exported collection."""

    count: int
    hash: str


@dataclass(frozen=True)
class BackupArchive:
    """A compressed archive produced by one successful export."""

    filename: str
    path: str
    checksum: str  # sha256 of the compressed bytes
    size_bytes: int
    duration_ms: int
    tables: List[str]  # collections with at least one record
    stats: Dict[str, TableStats]

    def to_dict(self) -> dict:
        return asdict(self)

    def manifest(self) -> "ArchiveManifest":
        return ArchiveManifest(
            tables=list(self.tables),
            stats=dict(self.stats),
            custom_checksum=self.checksum,
        )


@dataclass(frozen=True)
class ArchiveManifest:
    """
    Metadata stored next to each uploaded archive.

    Serialized with the camelCase keys used by the archive format so other
    readers of the bucket see the same shape.
    """

    tables: List[str] = field(default_factory=list)
    stats: Dict[str, TableStats] = field(default_factory=dict)
    custom_checksum: str = ""

    def to_json_dict(self) -> dict:
        return {
            "version": ARCHIVE_FORMAT_VERSION,
            "tables": list(self.tables),
            "stats": {
                name: {"count": s.count, "hash": s.hash} for name, s in self.stats.items()
            },
            "customChecksum": self.custom_checksum,
        }

    @classmethod
    def from_json_dict(cls, data: dict) -> "ArchiveManifest":
        raw_stats = data.get("stats") or {}
        stats = {
            name: TableStats(count=int(entry.get("count", 0)), hash=str(entry.get("hash", "")))
            for name, entry in raw_stats.items()
            if isinstance(entry, dict)
        }
        return cls(
            tables=list(data.get("tables") or []),
            stats=stats,
            custom_checksum=str(data.get("customChecksum") or ""),
        )
