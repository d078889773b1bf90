# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for s3snap tests.

Provides a seeded SQLite record store, an in-memory archive store and
test configuration helpers.
"""

import os
import tempfile
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Dict, Generator, List

import aiosqlite
import pytest
import pytest_asyncio

from s3snap.backup.models import ArchiveManifest
from s3snap.config import SnapshotConfig
from s3snap.remote import CleanupResult, RemoteArchive, UploadedArchive
from s3snap.store.sqlite import SQLiteRecordStore

# Set test environment variables
os.environ["S3SNAP_ADMIN_API_KEY"] = "test-api-key-12345"

USERS = [
    (1, "ada", 2**60),
    (2, "grace", 42),
    (3, "linus", -7),
]

POSTS = [(i, (i % 3) + 1, f"post {i}") for i in range(1, 26)]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> SnapshotConfig:
    """Create a test configuration."""
    return SnapshotConfig(
        bucket="test-bucket",
        region="us-east-1",
        work_dir=temp_dir / "work",
        page_size=10,
        retry_base_delay_seconds=0.0,
        retry_jitter=0.0,
        job_retention_seconds=0.05,
    )


async def seed_database(db_path: Path) -> None:
    """Create users, posts and an empty audit table."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, balance INTEGER)"
        )
        await db.execute(
            "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, title TEXT)"
        )
        await db.execute("CREATE TABLE audit (id INTEGER PRIMARY KEY, note TEXT)")
        await db.executemany("INSERT INTO users VALUES (?, ?, ?)", USERS)
        await db.executemany("INSERT INTO posts VALUES (?, ?, ?)", POSTS)
        await db.commit()


@pytest_asyncio.fixture
async def db_path(temp_dir: Path) -> Path:
    path = temp_dir / "app.db"
    await seed_database(path)
    return path


@pytest_asyncio.fixture
async def record_store(db_path: Path):
    """Open a SQLite record store over the seeded database."""
    async with SQLiteRecordStore(db_path) as store:
        yield store


class FakeArchiveStore:
    """
    In-memory archive store.

    Set ``list_error`` or ``upload_error`` to make the matching call raise.
    """

    def __init__(self):
        self.archives: Dict[str, RemoteArchive] = {}
        self.manifests: Dict[str, ArchiveManifest] = {}
        self.contents: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.list_error: Exception | None = None
        self.upload_error: Exception | None = None

    def add_archive(
        self,
        name: str,
        checksum: str | None = None,
        manifest: ArchiveManifest | None = None,
        age: timedelta = timedelta(0),
    ) -> RemoteArchive:
        remote_id = f"backups/{name}"
        archive = RemoteArchive(
            remote_id=remote_id,
            name=name,
            created_at=datetime.now(UTC) - age,
            size=0,
            custom_checksum=checksum,
        )
        self.archives[remote_id] = archive
        if manifest is not None:
            self.manifests[remote_id] = manifest
        return archive

    async def upload(self, local_path, filename, manifest) -> UploadedArchive:
        if self.upload_error is not None:
            raise self.upload_error
        remote_id = f"backups/{filename}"
        self.contents[remote_id] = Path(local_path).read_bytes()
        self.add_archive(filename, manifest.custom_checksum, manifest)
        self.uploads.append(remote_id)
        return UploadedArchive(
            remote_id=remote_id,
            web_link=f"https://test-bucket.example/{remote_id}",
            content_checksum="etag",
        )

    async def list_recent(self, limit=None) -> List[RemoteArchive]:
        if self.list_error is not None:
            raise self.list_error
        ordered = sorted(self.archives.values(), key=lambda a: a.created_at, reverse=True)
        return ordered[: limit or 100]

    async def get_info(self, remote_id):
        return self.archives.get(remote_id)

    async def get_metadata(self, remote_id):
        return self.manifests.get(remote_id)

    async def get_archive_tables(self, remote_id):
        manifest = self.manifests.get(remote_id)
        return list(manifest.tables) if manifest else []

    async def download(self, remote_id, dest_path):
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(self.contents[remote_id])
        return dest_path

    async def delete(self, remote_id):
        self.archives.pop(remote_id, None)
        self.manifests.pop(remote_id, None)
        self.deleted.append(remote_id)

    async def cleanup_old(self, retention_days=None) -> CleanupResult:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days or 0)
        result = CleanupResult()
        for remote_id, archive in list(self.archives.items()):
            if archive.created_at < cutoff:
                await self.delete(remote_id)
                result.deleted_files.append(archive.name)
        result.deleted = len(result.deleted_files)
        return result


@pytest.fixture
def archive_store() -> FakeArchiveStore:
    return FakeArchiveStore()


@pytest_asyncio.fixture
async def manager(test_config, record_store, archive_store):
    """Backup manager over the seeded store and the fake archive store."""
    from s3snap.jobs import BackupManager, JobStore

    backup_manager = BackupManager(
        test_config,
        record_store,
        archive_store,
        JobStore(log_buffer_size=test_config.log_buffer_size),
    )
    yield backup_manager
    await backup_manager.cancel_all()
    backup_manager.close()
