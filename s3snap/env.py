# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

create_config_from_env() reads a small set of well-known environment
variables and builds a validated SnapshotConfig from them.
"""

from __future__ import annotations

import os
from pathlib import Path

from s3snap.config import SnapshotConfig
from s3snap.errors import (
    explain_invalid_flag_env,
    explain_invalid_retention_days_env,
    explain_invalid_timeout_env,
    explain_missing_bucket_env,
)
from s3snap.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_retention_days(value: str | None) -> int:
    if not value:
        return 30
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_timeout(value: str | None) -> float:
    if not value:
        return 60.0
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_timeout_env(value)) from exc
    if seconds <= 0:
        raise ConfigurationError(explain_invalid_timeout_env(value))
    return seconds


def _parse_flag(name: str, value: str | None) -> bool:
    if not value:
        return False
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_flag_env(name, value))


def create_config_from_env(**overrides) -> SnapshotConfig:
    """
    Create a SnapshotConfig from environment variables.

    Required:
        - S3SNAP_BUCKET (or S3_BUCKET): bucket holding the archives

    Optional environment variables:
        - AWS_REGION: AWS region (default: us-east-1)
        - S3SNAP_PREFIX: key prefix for archives (default: backups/)
        - S3_ENDPOINT_URL: endpoint of an S3-compatible service
        - S3SNAP_WORK_DIR: directory for temporary files (default: system temp)
        - S3SNAP_COMPRESSION_TIMEOUT: seconds (default: 60)
        - S3SNAP_RETENTION_DAYS: non-negative integer (default: 30)
        - S3SNAP_SINGLE_FLIGHT: reuse the running job instead of starting another

    Keyword arguments override the environment.
    """

    bucket = os.getenv("S3SNAP_BUCKET") or os.getenv("S3_BUCKET")
    if not bucket and "bucket" not in overrides:
        raise ConfigurationError(explain_missing_bucket_env())

    work_dir_env = os.getenv("S3SNAP_WORK_DIR")

    values = {
        "bucket": bucket,
        "region": os.getenv("AWS_REGION", "us-east-1"),
        "prefix": os.getenv("S3SNAP_PREFIX", "backups/"),
        "endpoint_url": os.getenv("S3_ENDPOINT_URL") or None,
        "compression_timeout_seconds": _parse_timeout(os.getenv("S3SNAP_COMPRESSION_TIMEOUT")),
        "retention_days": _parse_retention_days(os.getenv("S3SNAP_RETENTION_DAYS")),
        "single_flight": _parse_flag("S3SNAP_SINGLE_FLIGHT", os.getenv("S3SNAP_SINGLE_FLIGHT")),
    }
    if work_dir_env:
        values["work_dir"] = Path(work_dir_env)

    values.update(overrides)
    return SnapshotConfig(**values)
