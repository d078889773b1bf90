# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""Archive checksums (sha256 over the compressed bytes)."""

import hashlib
from pathlib import Path
from typing import Tuple

import aiofiles

CHUNK_SIZE = 1024 * 1024


async def calculate_checksum(path: Path) -> str:
    """Stream ``path`` through sha256 and return the lowercase hex digest."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


async def verify_checksum(path: Path, expected: str) -> Tuple[bool, str]:
    """
    Check an archive against a previously recorded checksum.

    Returns:
        Tuple of (is_valid, actual_checksum)
    """
    actual = await calculate_checksum(path)
    return (actual == expected.lower(), actual)
