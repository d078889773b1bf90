# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot - Streaming database backups to S3.

Exports every collection of a relational store into one gzip-compressed
JSON archive, fingerprints it, skips the upload when nothing changed since
the newest remote archive, and tracks each run as a small state machine.
Package name: s3snap.
"""

__version__ = "0.1.0"

from s3snap.config import SnapshotConfig

# Core functions
from s3snap.core import (
    initialize_backup_manager,
    run_retention_cleanup,
    shutdown_backup_manager,
)

# Environment-based configuration
from s3snap.env import create_config_from_env

from s3snap.jobs import BackupJob, BackupManager, JobStatus, JobStore, JobType
from s3snap.remote import S3ArchiveStore
from s3snap.store.sqlite import SQLiteRecordStore

__all__ = [
    # Version
    "__version__",
    # Configuration
    "SnapshotConfig",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_backup_manager",
    "run_retention_cleanup",
    "shutdown_backup_manager",
    # Jobs
    "BackupJob",
    "BackupManager",
    "JobStatus",
    "JobStore",
    "JobType",
    # Stores
    "S3ArchiveStore",
    "SQLiteRecordStore",
]
