# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Export, compression, checksums and diffing.
"""

from s3snap.backup.models import (
    ARCHIVE_FORMAT_VERSION,
    ArchiveManifest,
    BackupArchive,
    ProgressEvent,
    ProgressStep,
    TableStats,
)

from s3snap.backup.export import (
    ExportResult,
    ProgressCallback,
    write_export,
)

from s3snap.backup.compressor import (
    compress_file,
    parse_archive_header,
)

from s3snap.backup.checksum import (
    calculate_checksum,
    verify_checksum,
)

from s3snap.backup.diff import (
    DiffRow,
    DiffStatus,
    compute_backup_diff,
)

from s3snap.backup.pipeline import (
    archive_filename,
    create_backup,
)

__all__ = [
    # Models
    "ARCHIVE_FORMAT_VERSION",
    "ArchiveManifest",
    "BackupArchive",
    "ProgressEvent",
    "ProgressStep",
    "TableStats",
    # Export
    "ExportResult",
    "ProgressCallback",
    "write_export",
    # Compression and checksums
    "compress_file",
    "parse_archive_header",
    "calculate_checksum",
    "verify_checksum",
    # Diff
    "DiffRow",
    "DiffStatus",
    "compute_backup_diff",
    # Pipeline
    "archive_filename",
    "create_backup",
]
