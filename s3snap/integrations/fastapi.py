# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot FastAPI Integration - Admin endpoints for backups.

Endpoints (all behind Bearer token auth):
- list archives and active jobs, start a backup
- archive tables, diff against the live store
- progress log, job history, retention cleanup
- server-sent progress stream
"""

import asyncio
import json
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from s3snap.config import SnapshotConfig
from s3snap.core import initialize_backup_manager, shutdown_backup_manager
from s3snap.exceptions import LegacyArchiveError
from s3snap.jobs import BackupManager
from s3snap.remote import RemoteApiError
from s3snap.store import RecordStore

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)

KEEPALIVE_EVERY = 15


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the S3SNAP_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("S3SNAP_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="S3SNAP_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def _remote_failure(error: RemoteApiError) -> HTTPException:
    status = 404 if error.code == 404 else 502
    return HTTPException(status_code=status, detail=error.to_dict())


async def job_event_stream(
    manager: BackupManager,
    interval: float = 1.0,
    max_events: int | None = None,
) -> AsyncIterator[str]:
    """
    Yield server-sent events describing the active jobs.

    One ``jobs`` event per ``interval`` and a keepalive comment every
    KEEPALIVE_EVERY events. Runs until cancelled unless ``max_events`` is set.
    """
    sent = 0
    while max_events is None or sent < max_events:
        payload = json.dumps({"jobs": [job.to_dict() for job in manager.get_current_jobs()]})
        yield f"event: jobs\ndata: {payload}\n\n"
        sent += 1
        if sent % KEEPALIVE_EVERY == 0:
            yield ": keepalive\n\n"
        if max_events is None or sent < max_events:
            await asyncio.sleep(interval)


def register_backup_routes(
    app: FastAPI,
    manager: BackupManager,
    prefix: str = "/admin/backups",
    progress_interval: float = 1.0,
) -> None:
    """
    Register backup admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        manager: Backup manager serving the requests
        prefix: URL prefix for endpoints (default: /admin/backups)
        progress_interval: Seconds between progress stream events
    """

    @app.get(prefix, dependencies=[Depends(verify_api_key)])
    async def list_backups(limit: int | None = None) -> dict:
        """List remote archives (newest first) and active jobs."""
        try:
            archives = await manager.list_backups(limit)
        except RemoteApiError as e:
            raise _remote_failure(e)
        return {
            "backups": [archive.to_dict() for archive in archives],
            "jobs": [job.to_dict() for job in manager.get_current_jobs()],
        }

    @app.post(prefix, status_code=202, dependencies=[Depends(verify_api_key)])
    async def start_backup() -> dict:
        """Start a backup; returns the job without waiting for it."""
        job = manager.start_backup()
        return {"job": job.to_dict()}

    @app.get(f"{prefix}/logs", dependencies=[Depends(verify_api_key)])
    async def get_logs(limit: int = 100) -> dict:
        return {"logs": [entry.to_dict() for entry in manager.get_logs(limit)]}

    @app.get(f"{prefix}/history", dependencies=[Depends(verify_api_key)])
    async def get_history() -> dict:
        return {"history": [job.to_dict() for job in manager.get_job_history()]}

    @app.post(f"{prefix}/cleanup", dependencies=[Depends(verify_api_key)])
    async def cleanup(retention_days: int | None = None) -> dict:
        """Delete archives older than the retention window."""
        try:
            result = await manager.cleanup_old_backups(retention_days)
        except RemoteApiError as e:
            raise _remote_failure(e)
        return {
            "deleted": result.deleted,
            "deleted_files": result.deleted_files,
            "errors": result.errors,
        }

    @app.get(f"{prefix}/progress", dependencies=[Depends(verify_api_key)])
    async def progress(request: Request) -> StreamingResponse:
        """Stream active job state as server-sent events."""

        async def events() -> AsyncIterator[str]:
            async for chunk in job_event_stream(manager, progress_interval):
                if await request.is_disconnected():
                    break
                yield chunk

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # remote ids are object keys and contain slashes
    @app.get(f"{prefix}/{{remote_id:path}}/tables", dependencies=[Depends(verify_api_key)])
    async def get_tables(remote_id: str) -> dict:
        try:
            tables = await manager.get_backup_tables(remote_id)
        except RemoteApiError as e:
            raise _remote_failure(e)
        return {"remote_id": remote_id, "tables": tables}

    @app.get(f"{prefix}/{{remote_id:path}}/diff", dependencies=[Depends(verify_api_key)])
    async def get_diff(remote_id: str, include_matches: bool = False) -> dict:
        """
        Compare an archive with the live store.

        Tables whose counts match are fully re-read; this can be slow.
        """
        try:
            rows = await manager.get_backup_diff(remote_id, include_matches=include_matches)
        except LegacyArchiveError as e:
            raise HTTPException(status_code=409, detail=e.message)
        return {"remote_id": remote_id, "diff": [row.to_dict() for row in rows]}


@asynccontextmanager
async def s3snap_lifespan(
    app: FastAPI,
    config: SnapshotConfig,
    record_store: RecordStore,
    prefix: str = "/admin/backups",
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: s3snap_lifespan(app, config, store))

    Args:
        app: FastAPI application
        config: Engine configuration
        record_store: An opened record store
        prefix: URL prefix for admin endpoints
    """
    logger.info("s3snap_lifespan_starting", bucket=config.bucket)

    manager = initialize_backup_manager(config, record_store)
    app.state.s3snap_manager = manager
    register_backup_routes(app, manager, prefix)

    logger.info("s3snap_lifespan_started")

    try:
        yield
    finally:
        logger.info("s3snap_lifespan_stopping")
        await shutdown_backup_manager(manager)
        logger.info("s3snap_lifespan_stopped")


def get_backup_manager(app: FastAPI) -> BackupManager:
    """
    Get the backup manager from a FastAPI app.

    Raises:
        RuntimeError: If s3snap was not initialized
    """
    manager = getattr(app.state, "s3snap_manager", None)
    if not manager:
        raise RuntimeError("s3snap not initialized. Use s3snap_lifespan first.")
    return manager
