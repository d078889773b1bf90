# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Job Management - Backup job state machine, store and manager.
"""

from s3snap.jobs.models import (
    TRANSITIONS,
    BackupJob,
    BackupLogEntry,
    JobStatus,
    JobType,
)

from s3snap.jobs.store import JobStore

from s3snap.jobs.manager import BackupManager

__all__ = [
    "TRANSITIONS",
    "BackupJob",
    "BackupLogEntry",
    "JobStatus",
    "JobType",
    "JobStore",
    "BackupManager",
]
