# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Core - Process-level wiring.

Builds the one BackupManager a process uses and tears it down again.
"""

import asyncio

import structlog

from s3snap.config import SnapshotConfig
from s3snap.errors import explain_missing_record_store
from s3snap.exceptions import ConfigurationError
from s3snap.jobs import BackupManager, JobStore
from s3snap.remote import ArchiveStore, CleanupResult, S3ArchiveStore
from s3snap.store import RecordStore

logger = structlog.get_logger()


def initialize_backup_manager(
    config: SnapshotConfig,
    record_store: RecordStore,
    archive_store: ArchiveStore | None = None,
) -> BackupManager:
    """
    Create the backup manager for this process.

    Args:
        config: Engine configuration
        record_store: An opened record store
        archive_store: Remote store; defaults to S3ArchiveStore(config)

    Returns:
        BackupManager owning a fresh JobStore
    """
    if record_store is None:
        raise ConfigurationError(explain_missing_record_store())

    config.work_dir.mkdir(parents=True, exist_ok=True)

    manager = BackupManager(
        config,
        record_store,
        archive_store or S3ArchiveStore(config),
        JobStore(log_buffer_size=config.log_buffer_size),
    )
    logger.info(
        "backup_manager_initialized",
        bucket=config.bucket,
        prefix=config.prefix,
        engine=record_store.engine,
        single_flight=config.single_flight,
    )
    return manager


async def run_retention_cleanup(
    manager: BackupManager, retention_days: int | None = None
) -> CleanupResult:
    """Delete remote archives older than the retention window."""
    days = manager.config.retention_days if retention_days is None else retention_days
    logger.info("retention_cleanup_started", retention_days=days)
    result = await manager.cleanup_old_backups(days)
    if result.errors:
        logger.warning("retention_cleanup_partial", errors=result.errors)
    return result


async def shutdown_backup_manager(manager: BackupManager, timeout: float = 30.0) -> None:
    """
    Wait for running jobs, then release the manager.

    Jobs still running after ``timeout`` seconds are cancelled and end up
    failed.
    """
    running = [job.id for job in manager.get_current_jobs() if not job.status.is_terminal]
    if running:
        logger.info("waiting_for_jobs", jobs=running)
        try:
            async with asyncio.timeout(timeout):
                for job_id in running:
                    await manager.wait_for_job(job_id)
        except TimeoutError:
            logger.warning("shutdown_cancelling_jobs", jobs=running)
            await manager.cancel_all()

    manager.close()
    logger.info("backup_manager_shutdown")
