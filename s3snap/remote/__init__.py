# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote Layer - Archive storage, error classification and retry policy.
"""

from pathlib import Path
from typing import List, Protocol

from s3snap.backup.models import ArchiveManifest
from s3snap.remote.errors import RemoteApiError, classify_error, parse_retry_after
from s3snap.remote.retry import CallResult, RetryOptions, safe_call, with_retry
from s3snap.remote.s3_store import (
    CleanupResult,
    RemoteArchive,
    S3ArchiveStore,
    UploadedArchive,
)


class ArchiveStore(Protocol):
    """Remote archive storage used by the backup manager."""

    async def upload(
        self, local_path: Path | str, filename: str, manifest: ArchiveManifest
    ) -> UploadedArchive:
        ...

    async def list_recent(self, limit: int | None = None) -> List[RemoteArchive]:
        ...

    async def get_info(self, remote_id: str) -> RemoteArchive | None:
        ...

    async def get_metadata(self, remote_id: str) -> ArchiveManifest | None:
        ...

    async def get_archive_tables(self, remote_id: str) -> List[str]:
        ...

    async def download(self, remote_id: str, dest_path: Path | str) -> Path:
        ...

    async def delete(self, remote_id: str) -> None:
        ...

    async def cleanup_old(self, retention_days: int | None = None) -> CleanupResult:
        ...


__all__ = [
    "ArchiveStore",
    "CallResult",
    "CleanupResult",
    "RemoteApiError",
    "RemoteArchive",
    "RetryOptions",
    "S3ArchiveStore",
    "UploadedArchive",
    "classify_error",
    "parse_retry_after",
    "safe_call",
    "with_retry",
]
