# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup job tests.

These cover the guarantees callers rely on:
1. start_backup() returns at once and never raises for job failures
2. An archive identical to the newest remote one is never uploaded
3. A failed dedup check never blocks the upload
4. A failed upload keeps the local archive for recovery
5. Finished jobs land in history and leave the active map shortly after
"""

import asyncio
from pathlib import Path

import pytest

from s3snap.backup.checksum import verify_checksum
from s3snap.backup.models import BackupArchive, ProgressEvent, ProgressStep, TableStats
from s3snap.exceptions import BackupError, ChecksumMismatchError, InvalidJobTransition
from s3snap.jobs import BackupJob, BackupManager, JobStatus, JobStore
from s3snap.remote import UploadedArchive


def fake_pipeline(checksum: str = "abc123", error: Exception | None = None):
    """Stand-in for create_backup() that writes a tiny archive."""

    async def create_backup(config, record_store, on_progress=None):
        if error is not None:
            raise error
        work_dir = Path(config.work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        path = work_dir / "backup_2026-01-01T00-00-00.json.gz"
        path.write_bytes(b"archive bytes")
        if on_progress:
            on_progress(ProgressEvent(ProgressStep.DONE, 100, "Backup completed"))
        return BackupArchive(
            filename=path.name,
            path=str(path),
            checksum=checksum,
            size_bytes=path.stat().st_size,
            duration_ms=1,
            tables=["users"],
            stats={"users": TableStats(count=3, hash="h")},
        )

    return create_backup


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_start_backup_returns_running_job_immediately(manager: BackupManager):
    job = manager.start_backup()

    assert job.id.startswith("backup-")
    assert job.status == JobStatus.RUNNING
    assert manager.get_current_jobs() == [job]

    await manager.wait_for_job(job.id)


@pytest.mark.asyncio
async def test_successful_backup_uploads_and_removes_local_archive(
    manager: BackupManager, archive_store, test_config
):
    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.error is None
    assert job.completed_at is not None
    assert archive_store.uploads == [job.result["remote_id"]]
    assert job.result["web_link"].startswith("https://")
    assert job.result["tables"] == ["posts", "users"]
    assert "skipped" not in job.result

    assert list(test_config.work_dir.iterdir()) == []
    assert manager.get_job_history() == [job]

    manifest = archive_store.manifests[job.result["remote_id"]]
    assert manifest.custom_checksum == job.result["checksum"]
    assert manifest.stats["users"].count == 3


@pytest.mark.asyncio
async def test_identical_archive_is_not_uploaded(
    manager: BackupManager, archive_store, test_config, monkeypatch
):
    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline("abc123"))
    archive_store.add_archive("backup_older.json.gz", checksum="abc123")

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.result["skipped"] is True
    assert job.result["checksum"] == "abc123"
    assert archive_store.uploads == []
    assert list(test_config.work_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_only_the_newest_archive_is_compared(
    manager: BackupManager, archive_store, monkeypatch
):
    from datetime import timedelta

    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline("abc123"))
    archive_store.add_archive("old.json.gz", checksum="abc123", age=timedelta(days=2))
    archive_store.add_archive("new.json.gz", checksum="def456")

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.COMPLETED
    assert len(archive_store.uploads) == 1


@pytest.mark.asyncio
async def test_dedup_check_failure_still_uploads(manager: BackupManager, archive_store):
    archive_store.list_error = ConnectionError("storage unreachable")

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.COMPLETED
    assert len(archive_store.uploads) == 1
    assert any("Dedup check failed" in entry.message for entry in manager.get_logs())


@pytest.mark.asyncio
async def test_upload_failure_keeps_local_archive(
    manager: BackupManager, archive_store, test_config
):
    archive_store.upload_error = RuntimeError("network down")

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.FAILED
    assert job.error == "network down"
    preserved = Path(job.result["preserved_path"])
    assert preserved.exists()
    assert preserved.parent == test_config.work_dir
    assert manager.get_job_history() == [job]


@pytest.mark.asyncio
async def test_export_failure_marks_job_failed(manager: BackupManager, monkeypatch):
    monkeypatch.setattr(
        "s3snap.jobs.manager.create_backup",
        fake_pipeline(error=BackupError("Backup failed: disk full", details={"x": 1})),
    )

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert job.status == JobStatus.FAILED
    assert job.error == "Backup failed: disk full"
    assert job.result is None


@pytest.mark.asyncio
async def test_job_is_uploading_while_upload_runs(
    manager: BackupManager, archive_store, monkeypatch
):
    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline())
    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_upload(local_path, filename, manifest):
        started.set()
        await release.wait()
        return UploadedArchive(remote_id=f"backups/{filename}", web_link=None, content_checksum=None)

    archive_store.upload = slow_upload

    job = manager.start_backup()
    await started.wait()

    assert job.status == JobStatus.UPLOADING
    assert job.current_step == "Uploading..."

    release.set()
    await manager.wait_for_job(job.id)
    assert job.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_finished_job_leaves_active_map_but_stays_in_history(
    manager: BackupManager, monkeypatch
):
    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline())

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    # observers can still read the terminal state for a moment
    assert manager.get_current_jobs() == [job]

    await asyncio.sleep(0.2)

    assert manager.get_current_jobs() == []
    assert manager.get_job_history() == [job]


@pytest.mark.asyncio
async def test_concurrent_backups_are_allowed_by_default(manager: BackupManager, archive_store):
    first = manager.start_backup()
    second = manager.start_backup()

    assert first.id != second.id

    await manager.wait_for_job(first.id)
    await manager.wait_for_job(second.id)

    assert first.status == JobStatus.COMPLETED
    assert second.status == JobStatus.COMPLETED
    assert len(manager.get_job_history()) == 2


@pytest.mark.asyncio
async def test_single_flight_reuses_active_job(test_config, record_store, archive_store):
    manager = BackupManager(
        test_config.with_updates(single_flight=True), record_store, archive_store, JobStore()
    )

    first = manager.start_backup()
    second = manager.start_backup()

    assert second is first

    await manager.wait_for_job(first.id)
    manager.close()


@pytest.mark.asyncio
async def test_progress_is_logged(manager: BackupManager):
    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    messages = [entry.message for entry in manager.get_logs(limit=100)]
    assert "Exporting users..." in messages
    assert "Calculating checksum..." in messages
    assert all(entry.job_id in (job.id, None) for entry in manager.get_logs())

    assert len(manager.get_logs(limit=2)) == 2
    assert manager.get_logs(limit=0) == []


@pytest.mark.asyncio
async def test_progress_never_goes_backwards(manager: BackupManager, archive_store, monkeypatch):
    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline())
    seen = []

    async def recording_upload(local_path, filename, manifest):
        seen.append(job.progress)
        return UploadedArchive(remote_id=f"backups/{filename}", web_link=None, content_checksum=None)

    archive_store.upload = recording_upload

    job = manager.start_backup()
    await manager.wait_for_job(job.id)

    assert seen == [100]
    assert job.progress == 100
    messages = [entry.message for entry in manager.get_logs()]
    assert messages.index("Uploading...") < messages.index("Removing local archive...")


@pytest.mark.asyncio
async def test_cancel_during_dedup_check_fails_job_and_keeps_archive(
    manager: BackupManager, archive_store, monkeypatch
):
    monkeypatch.setattr("s3snap.jobs.manager.create_backup", fake_pipeline())
    listing = asyncio.Event()

    async def blocked_list_recent(limit=None):
        listing.set()
        await asyncio.Event().wait()

    archive_store.list_recent = blocked_list_recent

    job = manager.start_backup()
    await listing.wait()
    await manager.cancel_all()

    assert job.status == JobStatus.FAILED
    assert job.error == "Backup cancelled"
    assert Path(job.result["preserved_path"]).exists()
    assert manager.get_job_history() == [job]
    assert archive_store.uploads == []


@pytest.mark.asyncio
async def test_cancel_during_export_fails_job(manager: BackupManager, monkeypatch):
    exporting = asyncio.Event()

    async def stalled_pipeline(config, record_store, on_progress=None):
        exporting.set()
        await asyncio.Event().wait()

    monkeypatch.setattr("s3snap.jobs.manager.create_backup", stalled_pipeline)

    job = manager.start_backup()
    await exporting.wait()
    await manager.cancel_all()

    assert job.status == JobStatus.FAILED
    assert job.error == "Backup cancelled"
    assert job.result is None
    assert manager.get_job_history() == [job]


# ============================================================================
# Downloads
# ============================================================================


@pytest.mark.asyncio
async def test_download_is_checked_against_recorded_checksum(
    manager: BackupManager, archive_store, temp_dir: Path
):
    job = manager.start_backup()
    await manager.wait_for_job(job.id)
    remote_id = job.result["remote_id"]

    path = await manager.download_backup(remote_id, temp_dir / "restore" / "archive.json.gz")

    assert path.read_bytes() == archive_store.contents[remote_id]
    valid, actual = await verify_checksum(path, job.result["checksum"].upper())
    assert valid
    assert actual == job.result["checksum"]


@pytest.mark.asyncio
async def test_corrupted_download_is_rejected_and_removed(
    manager: BackupManager, archive_store, temp_dir: Path
):
    job = manager.start_backup()
    await manager.wait_for_job(job.id)
    remote_id = job.result["remote_id"]
    archive_store.contents[remote_id] = b"not the uploaded bytes"
    dest = temp_dir / "archive.json.gz"

    with pytest.raises(ChecksumMismatchError) as exc_info:
        await manager.download_backup(remote_id, dest)

    assert exc_info.value.details["expected"] == job.result["checksum"]
    assert not dest.exists()


@pytest.mark.asyncio
async def test_download_without_recorded_checksum_is_returned_as_is(
    manager: BackupManager, archive_store, temp_dir: Path
):
    archive_store.add_archive("legacy.json.gz")
    archive_store.contents["backups/legacy.json.gz"] = b"legacy bytes"

    path = await manager.download_backup("backups/legacy.json.gz", temp_dir / "legacy.json.gz")

    assert path.read_bytes() == b"legacy bytes"


# ============================================================================
# State machine and store
# ============================================================================


def test_invalid_transitions_are_rejected():
    job = BackupJob(id="backup-test")

    with pytest.raises(InvalidJobTransition):
        job.transition(JobStatus.COMPLETED)

    job.transition(JobStatus.RUNNING)
    job.transition(JobStatus.UPLOADING)
    job.transition(JobStatus.COMPLETED)

    with pytest.raises(InvalidJobTransition):
        job.transition(JobStatus.FAILED)


def test_log_buffer_keeps_most_recent_entries():
    store = JobStore(log_buffer_size=3)
    for i in range(5):
        store.log(f"message {i}")

    assert [e.message for e in store.get_logs()] == ["message 2", "message 3", "message 4"]


def test_job_serializes_to_plain_data():
    job = BackupJob(id="backup-test")
    job.transition(JobStatus.RUNNING)

    data = job.to_dict()

    assert data["id"] == "backup-test"
    assert data["type"] == "full"
    assert data["status"] == "running"
    assert data["completed_at"] is None
