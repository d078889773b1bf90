# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Pipeline - Produce one compressed archive from the record store.

Order is fixed: export -> compress -> checksum. Nothing touches the archive
after its checksum is computed, so the checksum always describes the bytes
that get uploaded.
"""

import asyncio
import secrets
import time
from datetime import datetime, UTC
from pathlib import Path

import structlog

from s3snap.backup.checksum import calculate_checksum
from s3snap.backup.compressor import compress_file
from s3snap.backup.export import ProgressCallback, write_export
from s3snap.backup.models import BackupArchive, ProgressEvent, ProgressStep
from s3snap.config import SnapshotConfig
from s3snap.exceptions import BackupError, S3SnapError
from s3snap.store import RecordStore

logger = structlog.get_logger()


def archive_filename(now: datetime) -> str:
    """Remote archive name derived from a UTC timestamp."""
    return f"backup_{now.strftime('%Y-%m-%dT%H-%M-%S')}.json.gz"


def _emit(
    on_progress: ProgressCallback | None, step: ProgressStep, progress: int, message: str
) -> None:
    if on_progress:
        on_progress(ProgressEvent(step, progress, message))


async def create_backup(
    config: SnapshotConfig,
    record_store: RecordStore,
    on_progress: ProgressCallback | None = None,
) -> BackupArchive:
    """
    Export, compress and checksum the whole record store.

    Temporary files are removed on failure or cancellation. On success only
    the compressed archive remains on disk; the caller owns it from then on.

    Raises:
        BackupError: Wrapping any export, compression or checksum failure
    """
    started = time.monotonic()
    now = datetime.now(UTC)
    filename = archive_filename(now)

    # local names carry a token so concurrent runs never share files
    stem = f"{filename[: -len('.json.gz')]}.{secrets.token_hex(4)}"
    work_dir = Path(config.work_dir)
    json_path = work_dir / f"{stem}.json"
    archive_path = work_dir / f"{stem}.json.gz"

    _emit(on_progress, ProgressStep.INIT, 5, "Initializing backup...")
    logger.info("backup_started", filename=filename, engine=record_store.engine)

    try:
        work_dir.mkdir(parents=True, exist_ok=True)

        table_names = await record_store.list_table_names()
        exported = await write_export(
            json_path,
            table_names,
            record_store.collections(),
            record_store.engine,
            page_size=config.page_size,
            on_progress=on_progress,
            created_at=now,
        )

        json_size = json_path.stat().st_size
        logger.info("export_document_ready", path=str(json_path), size=json_size)
        _emit(
            on_progress,
            ProgressStep.COMPRESSING,
            75,
            f"Compressing ({json_size / 1024 / 1024:.2f} MB)...",
        )

        await compress_file(
            json_path,
            archive_path,
            level=config.compression_level,
            timeout_seconds=config.compression_timeout_seconds,
        )
        remove_quietly(json_path)

        _emit(on_progress, ProgressStep.COMPRESSING, 85, "Calculating checksum...")
        checksum = await calculate_checksum(archive_path)
        size_bytes = archive_path.stat().st_size

    except asyncio.CancelledError:
        remove_quietly(archive_path)
        remove_quietly(json_path)
        logger.warning("backup_cancelled", filename=filename)
        raise

    except Exception as e:
        remove_quietly(archive_path)
        remove_quietly(json_path)
        reason = e.message if isinstance(e, S3SnapError) else str(e)
        logger.error("backup_failed", filename=filename, error=reason)
        raise BackupError(f"Backup failed: {reason}", details={"filename": filename}) from e

    duration_ms = int((time.monotonic() - started) * 1000)
    _emit(on_progress, ProgressStep.DONE, 100, "Backup completed")

    logger.info(
        "backup_archive_ready",
        filename=filename,
        checksum=checksum,
        size_bytes=size_bytes,
        duration_ms=duration_ms,
        tables=len(exported.tables),
    )

    return BackupArchive(
        filename=filename,
        path=str(archive_path),
        checksum=checksum,
        size_bytes=size_bytes,
        duration_ms=duration_ms,
        tables=exported.tables,
        stats=exported.stats,
    )


def remove_quietly(path: Path | str) -> None:
    """Delete a local file, logging instead of raising on failure."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("local_file_cleanup_failed", path=str(path), error=str(e))
