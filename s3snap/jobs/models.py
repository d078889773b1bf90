# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup job records and their state machine.

    pending -> running -> uploading -> completed
                  |           |
                  +-> failed <+

A deduplicated run goes uploading -> completed with ``result["skipped"]``.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, FrozenSet

from s3snap.exceptions import InvalidJobTransition


class JobType(str, Enum):
    FULL = "full"
    SCHEDULED = "scheduled"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.UPLOADING, JobStatus.FAILED}),
    JobStatus.UPLOADING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass
class BackupJob:
    """
    Mutable state of one backup run.

    Only the owning BackupManager mutates a job; everyone else gets
    snapshots through to_dict().
    """

    id: str
    type: JobType = JobType.FULL
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    current_step: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    error: str | None = None
    result: Dict[str, Any] | None = None

    def transition(self, status: JobStatus) -> None:
        """Move to ``status``, enforcing the state machine."""
        if status not in TRANSITIONS[self.status]:
            raise InvalidJobTransition(
                f"Cannot move job from {self.status.value} to {status.value}",
                details={"job_id": self.id},
            )
        self.status = status
        if status.is_terminal:
            self.completed_at = datetime.now(UTC)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "progress": self.progress,
            "current_step": self.current_step,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "result": dict(self.result) if self.result is not None else None,
        }


@dataclass(frozen=True)
class BackupLogEntry:
    timestamp: datetime
    message: str
    job_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "job_id": self.job_id,
        }
