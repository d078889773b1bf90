# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so a running
backup job never observes a half-updated config.
"""

import re
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


@dataclass(frozen=True)
class SnapshotConfig:
    """
    Immutable configuration for the backup engine.

    Credentials are not part of the configuration; aiobotocore resolves
    them through the standard AWS credential chain.
    """

    # Required: bucket holding the archives
    bucket: str

    # AWS region (default: us-east-1)
    region: str = "us-east-1"

    # Key prefix acting as the dedicated backup folder
    prefix: str = "backups/"

    # Custom endpoint for S3-compatible services (MinIO, Garage, ...)
    endpoint_url: str | None = None

    # Directory for temporary export and archive files
    work_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    # Records fetched per page during export and diff
    page_size: int = 1000

    # gzip level (1-9)
    compression_level: int = 6

    # Hard wall-clock limit for compression
    compression_timeout_seconds: float = 60.0

    # Remote call retry policy
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 10.0
    retry_jitter: float = 0.2

    # Archives listed per remote listing
    list_page_size: int = 100

    # Files above this size are uploaded in parts of this size
    multipart_chunk_bytes: int = 8 * 1024 * 1024

    # Lifetime of presigned download links
    link_expiry_seconds: int = 3600

    # Age after which remote archives are removed by cleanup
    retention_days: int = 30

    # How long a finished job stays in the active map
    job_retention_seconds: float = 5.0

    # Progress log entries kept in memory
    log_buffer_size: int = 1000

    # Reuse the active job instead of starting a concurrent export
    single_flight: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if self.prefix and not self.prefix.endswith("/"):
            errors.append(f"prefix must end with '/', got {self.prefix!r}")

        if self.page_size < 1:
            errors.append(f"page_size must be >= 1, got {self.page_size}")

        if not 1 <= self.compression_level <= 9:
            errors.append(f"compression_level must be 1-9, got {self.compression_level}")

        if self.compression_timeout_seconds <= 0:
            errors.append(
                f"compression_timeout_seconds must be > 0, got {self.compression_timeout_seconds}"
            )

        if self.retry_max_attempts < 1:
            errors.append(f"retry_max_attempts must be >= 1, got {self.retry_max_attempts}")

        if not 0 <= self.retry_jitter < 1:
            errors.append(f"retry_jitter must be in [0, 1), got {self.retry_jitter}")

        # S3 rejects parts smaller than 5 MiB (except the last one)
        if self.multipart_chunk_bytes < 5 * 1024 * 1024:
            errors.append(
                f"multipart_chunk_bytes must be >= 5 MiB, got {self.multipart_chunk_bytes}"
            )

        if self.retention_days < 0:
            errors.append(f"retention_days must be >= 0, got {self.retention_days}")

        if self.job_retention_seconds < 0:
            errors.append(
                f"job_retention_seconds must be >= 0, got {self.job_retention_seconds}"
            )

        if self.log_buffer_size < 1:
            errors.append(f"log_buffer_size must be >= 1, got {self.log_buffer_size}")

        if errors:
            from s3snap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "SnapshotConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return SnapshotConfig(**current)
