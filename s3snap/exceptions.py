# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Exceptions - Custom exceptions for the s3snap package.
"""


class S3SnapError(Exception):
    """Base exception for all s3snap errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(S3SnapError):
    """Raised when configuration is invalid."""

    pass


class ExportError(S3SnapError):
    """Raised when the export document cannot be written."""

    pass


class CollectionReadError(S3SnapError):
    """Raised when a single record collection cannot be read."""

    pass


class CompressionError(S3SnapError):
    """Raised when compressing the export document fails."""

    pass


class CompressionTimeoutError(CompressionError):
    """Raised when compression exceeds its wall-clock budget."""

    pass


class BackupError(S3SnapError):
    """Raised when a backup run fails before upload."""

    pass


class LegacyArchiveError(S3SnapError):
    """Raised when a remote archive carries no per-table statistics."""

    pass


class ChecksumMismatchError(S3SnapError):
    """Raised when a downloaded archive does not match its recorded checksum."""

    pass


class InvalidJobTransition(S3SnapError):
    """Raised when a job is moved to a state it cannot reach."""

    pass
