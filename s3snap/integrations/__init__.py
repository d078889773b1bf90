# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin endpoints.
"""

from s3snap.integrations.fastapi import (
    get_backup_manager,
    job_event_stream,
    register_backup_routes,
    s3snap_lifespan,
    verify_api_key,
)

__all__ = [
    "get_backup_manager",
    "job_event_stream",
    "register_backup_routes",
    "s3snap_lifespan",
    "verify_api_key",
]
