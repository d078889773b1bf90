# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for s3snap.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_bucket_env() -> str:
    """
    Explain that the S3 bucket environment variable is missing.
    """

    return (
        "S3 bucket is not configured. "
        "Set S3SNAP_BUCKET (or S3_BUCKET) or pass bucket=... to SnapshotConfig()."
    )


def explain_invalid_retention_days_env(value: str | None) -> str:
    return (
        f"Invalid S3SNAP_RETENTION_DAYS value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_timeout_env(value: str | None) -> str:
    return (
        f"Invalid S3SNAP_COMPRESSION_TIMEOUT value: {value!r}. "
        "It must be a positive number of seconds, e.g. 60 or 90.5."
    )


def explain_invalid_flag_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment flag could not be parsed.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 1/0, true/false, yes/no, on/off."
    )


def explain_missing_record_store() -> str:
    return (
        "No record store was provided. "
        "Pass an SQLiteRecordStore or PostgresRecordStore to initialize_backup_manager()."
    )
