# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Process wiring tests.
"""

from datetime import timedelta

import pytest

from s3snap import (
    JobStatus,
    S3ArchiveStore,
    initialize_backup_manager,
    run_retention_cleanup,
    shutdown_backup_manager,
)
from s3snap.exceptions import ConfigurationError


@pytest.mark.asyncio
async def test_initialize_defaults_to_s3_store(test_config, record_store):
    manager = initialize_backup_manager(test_config, record_store)

    assert isinstance(manager.archive_store, S3ArchiveStore)
    assert manager.archive_store.bucket == "test-bucket"
    assert test_config.work_dir.is_dir()
    assert manager.get_current_jobs() == []


def test_initialize_requires_a_record_store(test_config):
    with pytest.raises(ConfigurationError):
        initialize_backup_manager(test_config, None)


@pytest.mark.asyncio
async def test_retention_cleanup_uses_configured_window(test_config, record_store, archive_store):
    manager = initialize_backup_manager(
        test_config.with_updates(retention_days=7), record_store, archive_store
    )
    archive_store.add_archive("stale.json.gz", age=timedelta(days=8))
    archive_store.add_archive("fresh.json.gz", age=timedelta(days=1))

    result = await run_retention_cleanup(manager)

    assert result.deleted_files == ["stale.json.gz"]
    assert archive_store.deleted == ["backups/stale.json.gz"]
    assert "Retention cleanup removed 1 archive(s)" in [e.message for e in manager.get_logs()]


@pytest.mark.asyncio
async def test_shutdown_waits_for_running_jobs(test_config, record_store, archive_store):
    manager = initialize_backup_manager(test_config, record_store, archive_store)
    job = manager.start_backup()

    await shutdown_backup_manager(manager)

    assert job.status == JobStatus.COMPLETED
    assert manager.get_current_jobs() == []
