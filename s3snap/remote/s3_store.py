# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Archive Store - Upload, list, inspect and delete archives in a bucket prefix.

Each archive ``<prefix><filename>`` is accompanied by a sidecar manifest
``<prefix><filename>.manifest.json`` holding the table list, per-table stats
and the archive checksum. The checksum is also copied into the object's
user metadata (``custom-checksum``) so listings can read it with a HEAD.

Every S3 call goes through with_retry(); failures surface as RemoteApiError.
"""

import asyncio
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable, List

import aiofiles
import structlog
from aiobotocore.session import get_session

from s3snap.backup.compressor import parse_archive_header
from s3snap.backup.models import ARCHIVE_FORMAT_VERSION, ArchiveManifest
from s3snap.config import SnapshotConfig
from s3snap.remote.errors import RemoteApiError
from s3snap.remote.retry import RetryOptions, safe_call, with_retry

logger = structlog.get_logger()

ARCHIVE_SUFFIX = ".json.gz"
MANIFEST_SUFFIX = ".manifest.json"
CHECKSUM_METADATA_KEY = "custom-checksum"

HEADER_PROBE_BYTES = 64 * 1024
DOWNLOAD_CHUNK_BYTES = 1024 * 1024
MAX_CONCURRENT_HEADS = 8


@dataclass(frozen=True)
class RemoteArchive:
    """An archive as seen in a bucket listing."""

    remote_id: str
    name: str
    created_at: datetime
    size: int
    web_link: str | None = None
    custom_checksum: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(frozen=True)
class UploadedArchive:
    """Result of a successful upload."""

    remote_id: str
    web_link: str | None
    content_checksum: str | None


@dataclass
class CleanupResult:
    """Outcome of a retention cleanup pass."""

    deleted: int = 0
    deleted_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class S3ArchiveStore:
    """
    Archive store over one S3 bucket prefix.

    ``client_factory`` returns an async context manager yielding an S3
    client; by default a fresh aiobotocore client is created per operation.
    """

    def __init__(
        self,
        config: SnapshotConfig,
        client_factory: Callable[[], Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.bucket = config.bucket
        self.prefix = config.prefix
        self._client_factory = client_factory
        self._session = None if client_factory else get_session()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _client(self):
        if self._client_factory is not None:
            return self._client_factory()
        return self._session.create_client(
            "s3",
            region_name=self.config.region,
            endpoint_url=self.config.endpoint_url,
        )

    def _options(self, context: str, idempotent: bool = True) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.config.retry_max_attempts,
            base_delay=self.config.retry_base_delay_seconds,
            max_delay=self.config.retry_max_delay_seconds,
            jitter=self.config.retry_jitter,
            idempotent=idempotent,
            context=context,
        )

    async def _call(self, operation, context: str, idempotent: bool = True) -> Any:
        return await with_retry(operation, self._options(context, idempotent), self._sleep)

    def key_for(self, filename: str) -> str:
        return f"{self.prefix}{filename}"

    def _name_of(self, key: str) -> str:
        return key[len(self.prefix):] if key.startswith(self.prefix) else key

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        local_path: Path | str,
        filename: str,
        manifest: ArchiveManifest,
    ) -> UploadedArchive:
        """
        Upload an archive and its manifest.

        Returns:
            UploadedArchive with the object key, a presigned link and the ETag
        """
        local_path = Path(local_path)
        key = self.key_for(filename)
        size = local_path.stat().st_size
        metadata = {
            CHECKSUM_METADATA_KEY: manifest.custom_checksum,
            "table-count": str(len(manifest.tables)),
            "format-version": ARCHIVE_FORMAT_VERSION,
        }

        async with self._client() as s3:
            if size <= self.config.multipart_chunk_bytes:
                async with aiofiles.open(local_path, "rb") as f:
                    body = await f.read()
                # deterministic key: a repeated PUT overwrites the same object
                response = await self._call(
                    lambda: s3.put_object(
                        Bucket=self.bucket,
                        Key=key,
                        Body=body,
                        Metadata=metadata,
                        ContentType="application/gzip",
                    ),
                    context="put_object",
                )
                etag = response.get("ETag")
            else:
                etag = await self._multipart_upload(s3, key, local_path, metadata)

            manifest_body = json.dumps(manifest.to_json_dict(), separators=(",", ":")).encode()
            await self._call(
                lambda: s3.put_object(
                    Bucket=self.bucket,
                    Key=key + MANIFEST_SUFFIX,
                    Body=manifest_body,
                    ContentType="application/json",
                ),
                context="put_manifest",
            )

            web_link = await self._presign(s3, key)

        logger.info("archive_uploaded", key=key, size=size, multipart=size > self.config.multipart_chunk_bytes)

        return UploadedArchive(
            remote_id=key,
            web_link=web_link,
            content_checksum=etag.strip('"') if etag else None,
        )

    async def _multipart_upload(self, s3, key: str, local_path: Path, metadata: dict) -> str | None:
        created = await self._call(
            lambda: s3.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                Metadata=metadata,
                ContentType="application/gzip",
            ),
            context="create_multipart_upload",
            idempotent=False,
        )
        upload_id = created["UploadId"]
        parts: List[dict] = []

        try:
            async with aiofiles.open(local_path, "rb") as f:
                part_number = 1
                while True:
                    chunk = await f.read(self.config.multipart_chunk_bytes)
                    if not chunk:
                        break
                    response = await self._call(
                        lambda chunk=chunk, n=part_number: s3.upload_part(
                            Bucket=self.bucket,
                            Key=key,
                            PartNumber=n,
                            UploadId=upload_id,
                            Body=chunk,
                        ),
                        context="upload_part",
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    logger.debug("archive_part_uploaded", key=key, part=part_number)
                    part_number += 1

            completed = await self._call(
                lambda: s3.complete_multipart_upload(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                ),
                context="complete_multipart_upload",
                idempotent=False,
            )
        except Exception:
            aborted = await safe_call(
                lambda: s3.abort_multipart_upload(
                    Bucket=self.bucket, Key=key, UploadId=upload_id
                ),
                self._options("abort_multipart_upload"),
                self._sleep,
            )
            if not aborted.ok:
                logger.warning(
                    "multipart_abort_failed",
                    key=key,
                    upload_id=upload_id,
                    error=aborted.error.message,
                )
            raise

        return completed.get("ETag")

    async def _presign(self, s3, key: str) -> str | None:
        try:
            return await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.config.link_expiry_seconds,
            )
        except Exception as e:
            logger.warning("presign_failed", key=key, error=str(e))
            return None

    # ------------------------------------------------------------------
    # listing and inspection
    # ------------------------------------------------------------------

    async def _list_archive_objects(self, s3) -> List[dict]:
        objects: List[dict] = []
        token = None

        while True:
            kwargs = {"Bucket": self.bucket, "Prefix": self.prefix}
            if token:
                kwargs["ContinuationToken"] = token
            response = await self._call(
                lambda kwargs=kwargs: s3.list_objects_v2(**kwargs),
                context="list_objects_v2",
            )
            for obj in response.get("Contents", []):
                if obj["Key"].endswith(ARCHIVE_SUFFIX):
                    objects.append(obj)

            if not response.get("IsTruncated"):
                return objects
            token = response.get("NextContinuationToken")

    async def list_recent(self, limit: int | None = None) -> List[RemoteArchive]:
        """List archives newest-first, with their stored checksums."""
        limit = limit or self.config.list_page_size

        async with self._client() as s3:
            objects = await self._list_archive_objects(s3)
            objects.sort(key=lambda obj: obj["LastModified"], reverse=True)
            recent = objects[:limit]

            semaphore = asyncio.Semaphore(MAX_CONCURRENT_HEADS)

            async def describe(obj: dict) -> RemoteArchive:
                async with semaphore:
                    head = await self._call(
                        lambda: s3.head_object(Bucket=self.bucket, Key=obj["Key"]),
                        context="head_object",
                    )
                return RemoteArchive(
                    remote_id=obj["Key"],
                    name=self._name_of(obj["Key"]),
                    created_at=obj["LastModified"],
                    size=int(obj.get("Size", 0)),
                    custom_checksum=(head.get("Metadata") or {}).get(CHECKSUM_METADATA_KEY),
                )

            return list(await asyncio.gather(*[describe(obj) for obj in recent]))

    async def get_info(self, remote_id: str) -> RemoteArchive | None:
        """Describe one archive; None if it does not exist."""
        async with self._client() as s3:
            try:
                head = await self._call(
                    lambda: s3.head_object(Bucket=self.bucket, Key=remote_id),
                    context="head_object",
                )
            except RemoteApiError as e:
                if e.code == 404:
                    return None
                raise
            web_link = await self._presign(s3, remote_id)

        return RemoteArchive(
            remote_id=remote_id,
            name=self._name_of(remote_id),
            created_at=head.get("LastModified") or datetime.now(UTC),
            size=int(head.get("ContentLength", 0)),
            web_link=web_link,
            custom_checksum=(head.get("Metadata") or {}).get(CHECKSUM_METADATA_KEY),
        )

    async def get_metadata(self, remote_id: str) -> ArchiveManifest | None:
        """
        Read the manifest stored next to an archive.

        Archives uploaded without a manifest return None.
        """
        async with self._client() as s3:
            try:
                response = await self._call(
                    lambda: s3.get_object(Bucket=self.bucket, Key=remote_id + MANIFEST_SUFFIX),
                    context="get_manifest",
                )
            except RemoteApiError as e:
                if e.code == 404:
                    return None
                raise

            async with response["Body"] as stream:
                raw = await stream.read()

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("manifest_unreadable", remote_id=remote_id, error=str(e))
            return None
        if not isinstance(data, dict):
            return None
        return ArchiveManifest.from_json_dict(data)

    async def get_archive_tables(self, remote_id: str) -> List[str]:
        """
        Table names listed in an archive's header.

        Only the first bytes of the archive are fetched; falls back to the
        manifest when the header cannot be decoded.
        """
        async with self._client() as s3:
            response = await self._call(
                lambda: s3.get_object(
                    Bucket=self.bucket,
                    Key=remote_id,
                    Range=f"bytes=0-{HEADER_PROBE_BYTES - 1}",
                ),
                context="get_archive_header",
            )
            async with response["Body"] as stream:
                prefix = await stream.read()

        header = parse_archive_header(prefix)
        if header and isinstance(header.get("tables"), list):
            return [str(t) for t in header["tables"]]

        manifest = await self.get_metadata(remote_id)
        return list(manifest.tables) if manifest else []

    async def download(self, remote_id: str, dest_path: Path | str) -> Path:
        """Stream an archive to a local file."""
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._client() as s3:
            response = await self._call(
                lambda: s3.get_object(Bucket=self.bucket, Key=remote_id),
                context="get_object",
            )
            async with response["Body"] as stream, aiofiles.open(dest_path, "wb") as f:
                while True:
                    chunk = await stream.read(DOWNLOAD_CHUNK_BYTES)
                    if not chunk:
                        break
                    await f.write(chunk)

        logger.info("archive_downloaded", remote_id=remote_id, path=str(dest_path))
        return dest_path

    # ------------------------------------------------------------------
    # deletion
    # ------------------------------------------------------------------

    async def delete(self, remote_id: str) -> None:
        """Delete an archive and its manifest."""
        async with self._client() as s3:
            await self._delete_with(s3, remote_id)

    async def _delete_with(self, s3, remote_id: str) -> None:
        for key in (remote_id, remote_id + MANIFEST_SUFFIX):
            await self._call(
                lambda key=key: s3.delete_object(Bucket=self.bucket, Key=key),
                context="delete_object",
            )
        logger.info("archive_deleted", remote_id=remote_id)

    async def cleanup_old(self, retention_days: int | None = None) -> CleanupResult:
        """
        Delete archives older than ``retention_days``.

        Per-archive failures are collected instead of aborting the pass.
        """
        if retention_days is None:
            retention_days = self.config.retention_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        result = CleanupResult()

        async with self._client() as s3:
            objects = await self._list_archive_objects(s3)
            for obj in objects:
                if obj["LastModified"] >= cutoff:
                    continue
                name = self._name_of(obj["Key"])
                try:
                    await self._delete_with(s3, obj["Key"])
                except RemoteApiError as e:
                    result.errors.append(f"{name}: {e.message}")
                    continue
                result.deleted_files.append(name)

        result.deleted = len(result.deleted_files)
        logger.info(
            "archive_cleanup_complete",
            retention_days=retention_days,
            deleted=result.deleted,
            errors=len(result.errors),
        )
        return result
