# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
FastAPI admin endpoint tests.
"""

import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from s3snap.backup.models import ArchiveManifest, TableStats
from s3snap.integrations.fastapi import job_event_stream, register_backup_routes

AUTH = {"Authorization": "Bearer test-api-key-12345"}


@pytest_asyncio.fixture
async def client(manager):
    app = FastAPI()
    register_backup_routes(app, manager, progress_interval=0.01)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.mark.asyncio
async def test_requests_without_key_are_rejected(client):
    response = await client.get("/admin/backups")
    assert response.status_code == 401

    response = await client.get("/admin/backups", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_backups_and_jobs(client, archive_store):
    archive_store.add_archive("older.json.gz", checksum="a", age=timedelta(hours=1))
    archive_store.add_archive("newer.json.gz", checksum="b")

    response = await client.get("/admin/backups", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert [b["name"] for b in body["backups"]] == ["newer.json.gz", "older.json.gz"]
    assert body["jobs"] == []


@pytest.mark.asyncio
async def test_start_backup_and_read_history(client, manager):
    response = await client.post("/admin/backups", headers=AUTH)

    assert response.status_code == 202
    job = response.json()["job"]
    assert job["status"] == "running"

    await manager.wait_for_job(job["id"])

    history = (await client.get("/admin/backups/history", headers=AUTH)).json()["history"]
    assert [j["id"] for j in history] == [job["id"]]
    assert history[0]["status"] == "completed"

    logs = (await client.get("/admin/backups/logs?limit=3", headers=AUTH)).json()["logs"]
    assert len(logs) == 3


@pytest.mark.asyncio
async def test_archive_tables_endpoint(client, archive_store):
    archive_store.add_archive(
        "snap.json.gz",
        checksum="a",
        manifest=ArchiveManifest(tables=["posts", "users"], custom_checksum="a"),
    )

    response = await client.get("/admin/backups/backups/snap.json.gz/tables", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "remote_id": "backups/snap.json.gz",
        "tables": ["posts", "users"],
    }


@pytest.mark.asyncio
async def test_diff_endpoint(client, archive_store):
    archive_store.add_archive(
        "snap.json.gz",
        checksum="a",
        manifest=ArchiveManifest(
            tables=["users"],
            stats={"users": TableStats(count=99, hash="x")},
            custom_checksum="a",
        ),
    )

    response = await client.get("/admin/backups/backups/snap.json.gz/diff", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["diff"] == [
        {"table": "posts", "status": "missing_remote", "local_count": 25, "remote_count": 0},
        {"table": "users", "status": "count_mismatch", "local_count": 3, "remote_count": 99},
    ]


@pytest.mark.asyncio
async def test_diff_of_legacy_archive_is_a_conflict(client, archive_store):
    archive_store.add_archive("legacy.json.gz", checksum="a")

    response = await client.get("/admin/backups/backups/legacy.json.gz/diff", headers=AUTH)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cleanup_endpoint(client, archive_store):
    archive_store.add_archive("ancient.json.gz", checksum="a", age=timedelta(days=90))
    archive_store.add_archive("recent.json.gz", checksum="b")

    response = await client.post("/admin/backups/cleanup?retention_days=30", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["deleted_files"] == ["ancient.json.gz"]
    assert list(archive_store.archives) == ["backups/recent.json.gz"]


@pytest.mark.asyncio
async def test_progress_stream_emits_job_events(manager):
    job = manager.start_backup()

    chunks = [chunk async for chunk in job_event_stream(manager, interval=0.01, max_events=2)]

    assert len(chunks) == 2
    assert all(chunk.startswith("event: jobs\ndata: ") for chunk in chunks)
    payload = json.loads(chunks[0].split("data: ", 1)[1])
    assert payload["jobs"][0]["id"] == job.id

    await manager.wait_for_job(job.id)
