# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Backup Manager - Run backup jobs and expose their state.

A job is one sequential worker task:

    export -> compress -> checksum -> dedup check -> upload

start_backup() returns as soon as the task is scheduled. Any failure inside
the task ends up as job state (status "failed" plus a one-line error); it
never propagates to the caller.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Set

import structlog
from ulid import ULID

from s3snap.backup.checksum import verify_checksum
from s3snap.backup.diff import DiffRow, compute_backup_diff
from s3snap.backup.models import BackupArchive, ProgressEvent, ProgressStep
from s3snap.backup.pipeline import create_backup, remove_quietly
from s3snap.config import SnapshotConfig
from s3snap.exceptions import ChecksumMismatchError, LegacyArchiveError, S3SnapError
from s3snap.jobs.models import BackupJob, BackupLogEntry, JobStatus, JobType
from s3snap.jobs.store import DEFAULT_LOG_LIMIT, JobStore
from s3snap.remote import ArchiveStore, CleanupResult, RemoteArchive
from s3snap.remote.retry import RetryOptions, safe_call
from s3snap.store import RecordStore

logger = structlog.get_logger()


def _error_text(error: BaseException) -> str:
    if isinstance(error, S3SnapError):
        return error.message
    return str(error) or type(error).__name__


class BackupManager:
    """
    Owns every backup job of the process.

    Args:
        config: Engine configuration
        record_store: Source of the collections to export
        archive_store: Remote store the archives are uploaded to
        job_store: Job state holder; a fresh one is created when omitted
    """

    def __init__(
        self,
        config: SnapshotConfig,
        record_store: RecordStore,
        archive_store: ArchiveStore,
        job_store: JobStore | None = None,
    ):
        self.config = config
        self.record_store = record_store
        self.archive_store = archive_store
        self.jobs = job_store or JobStore(log_buffer_size=config.log_buffer_size)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._pending_removals: Set[asyncio.TimerHandle] = set()

    # ------------------------------------------------------------------
    # job lifecycle
    # ------------------------------------------------------------------

    def start_backup(self, job_type: JobType = JobType.FULL) -> BackupJob:
        """
        Start a backup in the background and return its job immediately.

        Must be called from a running event loop.
        """
        if self.config.single_flight:
            for job in self.jobs.active():
                if not job.status.is_terminal:
                    logger.info("backup_already_running", job_id=job.id)
                    return job

        job = BackupJob(id=f"backup-{ULID()}", type=job_type)
        self.jobs.add(job)
        job.transition(JobStatus.RUNNING)
        job.current_step = "Starting backup..."
        self.jobs.log(f"Backup {job.id} started", job.id)
        logger.info("backup_job_started", job_id=job.id, type=job_type.value)

        task = asyncio.get_running_loop().create_task(self._run_job(job))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return job

    async def wait_for_job(self, job_id: str) -> BackupJob | None:
        """Wait until a job's worker task has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.jobs.find(job_id)

    async def _run_job(self, job: BackupJob) -> None:
        try:
            archive = await create_backup(
                self.config,
                self.record_store,
                on_progress=lambda event: self._on_progress(job, event),
            )
        except asyncio.CancelledError:
            self._fail(job, "Backup cancelled")
            raise
        except Exception as e:
            self._fail(job, _error_text(e))
            return

        if job.status == JobStatus.RUNNING:
            job.transition(JobStatus.UPLOADING)

        # from here on the local archive is kept for manual recovery on failure
        try:
            duplicate = await self._is_duplicate(job, archive)
            if not duplicate:
                self._on_progress(
                    job, ProgressEvent(ProgressStep.UPLOADING, job.progress, "Uploading...")
                )
                uploaded = await self.archive_store.upload(
                    archive.path, archive.filename, archive.manifest()
                )
        except asyncio.CancelledError:
            self._fail(job, "Backup cancelled", archive)
            raise
        except Exception as e:
            self._fail(job, _error_text(e), archive)
            return

        if duplicate:
            remove_quietly(archive.path)
            self._complete(
                job,
                {
                    **archive.to_dict(),
                    "skipped": True,
                    "message": "No changes since the last backup",
                },
                "Backup skipped: identical to the latest remote archive",
            )
            return

        self._on_progress(
            job, ProgressEvent(ProgressStep.CLEANUP, job.progress, "Removing local archive...")
        )
        remove_quietly(archive.path)
        self._complete(
            job,
            {
                **archive.to_dict(),
                "remote_id": uploaded.remote_id,
                "web_link": uploaded.web_link,
                "content_checksum": uploaded.content_checksum,
            },
            f"Backup uploaded as {uploaded.remote_id}",
        )

    async def _is_duplicate(self, job: BackupJob, archive: BackupArchive) -> bool:
        """Compare against the newest remote archive; failures never block the run."""
        job.current_step = "Checking for changes..."
        latest = await safe_call(
            lambda: self.archive_store.list_recent(limit=1),
            RetryOptions(max_attempts=1, context="dedup_check"),
        )
        if not latest.ok:
            logger.warning("dedup_check_failed", job_id=job.id, error=latest.error.message)
            self.jobs.log(f"Dedup check failed, uploading anyway: {latest.error.message}", job.id)
            return False

        newest = latest.data[0] if latest.data else None
        if newest is None or not newest.custom_checksum:
            return False
        return newest.custom_checksum == archive.checksum

    def _on_progress(self, job: BackupJob, event: ProgressEvent) -> None:
        job.progress = event.progress
        job.current_step = event.message
        self.jobs.log(event.message, job.id)
        if event.step == ProgressStep.DONE and job.status == JobStatus.RUNNING:
            job.transition(JobStatus.UPLOADING)

    def _complete(self, job: BackupJob, result: dict, message: str) -> None:
        job.transition(JobStatus.COMPLETED)
        job.progress = 100
        job.current_step = message
        job.result = result
        self.jobs.log(message, job.id)
        logger.info("backup_job_completed", job_id=job.id, skipped=result.get("skipped", False))
        self._finish(job)

    def _fail(self, job: BackupJob, error: str, archive: BackupArchive | None = None) -> None:
        job.transition(JobStatus.FAILED)
        job.error = error
        job.current_step = "Backup failed"
        if archive is not None:
            job.result = {**archive.to_dict(), "preserved_path": archive.path}
        self.jobs.log(f"Backup failed: {error}", job.id)
        logger.error("backup_job_failed", job_id=job.id, error=error)
        self._finish(job)

    def _finish(self, job: BackupJob) -> None:
        self.jobs.archive(job)
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _remove() -> None:
            self.jobs.remove(job.id)
            self._pending_removals.discard(handle)

        handle = loop.call_later(self.config.job_retention_seconds, _remove)
        self._pending_removals.add(handle)

    async def cancel_all(self) -> None:
        """Cancel every running worker task and wait for them to settle."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        """Drop delayed removals and clear finished jobs from the active map."""
        for handle in self._pending_removals:
            handle.cancel()
        self._pending_removals.clear()
        for job in self.jobs.active():
            if job.status.is_terminal:
                self.jobs.remove(job.id)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_current_jobs(self) -> List[BackupJob]:
        return self.jobs.active()

    def get_job_history(self) -> List[BackupJob]:
        return self.jobs.history()

    def get_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> List[BackupLogEntry]:
        return self.jobs.get_logs(limit)

    async def get_backup_diff(
        self, remote_id: str, include_matches: bool = False
    ) -> List[DiffRow]:
        """
        Compare a remote archive with the live store.

        Tables with equal counts are fully re-read and hashed.

        Raises:
            LegacyArchiveError: No per-table stats could be read for the archive
        """
        fetched = await safe_call(
            lambda: self.archive_store.get_metadata(remote_id),
            RetryOptions(max_attempts=1, context="metadata_fetch"),
        )
        details = {"remote_id": remote_id}
        if not fetched.ok:
            logger.warning("manifest_fetch_failed", remote_id=remote_id, error=fetched.error.message)
            details["error"] = fetched.error.message

        manifest = fetched.data if fetched.ok else None
        if manifest is None or not manifest.stats:
            raise LegacyArchiveError(
                "Backup does not support granular comparison (legacy)",
                details=details,
            )

        table_names = await self.record_store.list_table_names()
        return await compute_backup_diff(
            manifest.stats,
            table_names,
            self.record_store.collections(),
            page_size=self.config.page_size,
            include_matches=include_matches,
        )

    async def list_backups(self, limit: int | None = None) -> List[RemoteArchive]:
        return await self.archive_store.list_recent(limit)

    async def get_backup_tables(self, remote_id: str) -> List[str]:
        return await self.archive_store.get_archive_tables(remote_id)

    async def download_backup(self, remote_id: str, dest_path: Path | str) -> Path:
        """
        Download an archive and check it against its recorded checksum.

        Archives without a recorded checksum are returned unchecked.

        Raises:
            ChecksumMismatchError: The downloaded bytes differ from the upload
        """
        info = await self.archive_store.get_info(remote_id)
        path = await self.archive_store.download(remote_id, dest_path)
        if info is None or not info.custom_checksum:
            logger.warning("download_unverified", remote_id=remote_id)
            return path

        valid, actual = await verify_checksum(path, info.custom_checksum)
        if not valid:
            remove_quietly(path)
            raise ChecksumMismatchError(
                f"Downloaded archive {remote_id} does not match its checksum",
                details={"expected": info.custom_checksum, "actual": actual},
            )
        logger.info("download_verified", remote_id=remote_id, checksum=actual)
        return path

    async def cleanup_old_backups(self, retention_days: int | None = None) -> CleanupResult:
        result = await self.archive_store.cleanup_old(retention_days)
        self.jobs.log(f"Retention cleanup removed {result.deleted} archive(s)")
        return result
