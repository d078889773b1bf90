# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
In-memory job store.

Holds the active jobs, the append-only history and a bounded progress log.
Nothing is persisted: a job in flight when the process exits is lost.
"""

from collections import deque
from datetime import datetime, UTC
from typing import Deque, Dict, List

from s3snap.jobs.models import BackupJob, BackupLogEntry

DEFAULT_LOG_LIMIT = 100


class JobStore:
    """Single-owner store for job state, shared by reference."""

    def __init__(self, log_buffer_size: int = 1000):
        self._active: Dict[str, BackupJob] = {}
        self._history: List[BackupJob] = []
        self._logs: Deque[BackupLogEntry] = deque(maxlen=log_buffer_size)

    # Active jobs

    def add(self, job: BackupJob) -> None:
        self._active[job.id] = job

    def get(self, job_id: str) -> BackupJob | None:
        return self._active.get(job_id)

    def remove(self, job_id: str) -> None:
        self._active.pop(job_id, None)

    def active(self) -> List[BackupJob]:
        return list(self._active.values())

    # History

    def archive(self, job: BackupJob) -> None:
        self._history.append(job)

    def history(self) -> List[BackupJob]:
        """Finished jobs, newest first."""
        return list(reversed(self._history))

    def find(self, job_id: str) -> BackupJob | None:
        """Look a job up in the active map, then in history."""
        job = self._active.get(job_id)
        if job is not None:
            return job
        for job in reversed(self._history):
            if job.id == job_id:
                return job
        return None

    # Logs

    def log(self, message: str, job_id: str | None = None) -> BackupLogEntry:
        entry = BackupLogEntry(timestamp=datetime.now(UTC), message=message, job_id=job_id)
        self._logs.append(entry)
        return entry

    def get_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> List[BackupLogEntry]:
        """Most recent log entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._logs)[-limit:]
