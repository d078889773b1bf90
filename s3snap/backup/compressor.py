# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Snapshot Compressor - Streaming gzip pipeline for export documents.

The export document is piped chunk by chunk through a gzip encoder into the
archive file, so documents larger than memory compress in constant space.
The whole pipe runs under a hard wall-clock timeout.

The gzip header carries no timestamp or filename, so identical input always
produces identical archive bytes.
"""

import asyncio
import json
import zlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import aiofiles
import structlog

from s3snap.exceptions import CompressionError, CompressionTimeoutError

logger = structlog.get_logger()

# Thread pool for CPU-bound deflate work
_executor = ThreadPoolExecutor(max_workers=2)

DEFAULT_GZIP_LEVEL = 6  # favors speed over ratio
DEFAULT_TIMEOUT_SECONDS = 60.0
CHUNK_SIZE = 1024 * 1024

_GZIP_WBITS = 16 + zlib.MAX_WBITS
_LOG_EVERY_BYTES = 64 * 1024 * 1024


async def compress_file(
    source: Path,
    destination: Path,
    level: int = DEFAULT_GZIP_LEVEL,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> int:
    """
    Gzip ``source`` into ``destination``.

    On timeout, failure or cancellation both file handles are closed and
    the partial destination is removed.

    Returns:
        Size of the compressed file in bytes

    Raises:
        CompressionTimeoutError: If the pipe does not finish in time
        CompressionError: If reading, deflating or writing fails
    """
    try:
        async with asyncio.timeout(timeout_seconds):
            written = await _pipe(source, destination, level)

    except TimeoutError as e:
        _remove_partial(destination)
        raise CompressionTimeoutError(
            f"Compression timed out after {timeout_seconds:g} seconds",
            details={"source": str(source)},
        ) from e

    except (OSError, zlib.error) as e:
        _remove_partial(destination)
        raise CompressionError(
            f"Compression failed: {e}",
            details={"source": str(source)},
        ) from e

    except asyncio.CancelledError:
        _remove_partial(destination)
        raise

    logger.info(
        "compression_complete",
        source=str(source),
        destination=str(destination),
        compressed_size=written,
    )
    return written


async def _pipe(source: Path, destination: Path, level: int) -> int:
    loop = asyncio.get_running_loop()
    compressor = zlib.compressobj(level, zlib.DEFLATED, _GZIP_WBITS)
    bytes_read = 0
    bytes_written = 0
    next_log = _LOG_EVERY_BYTES

    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        while True:
            chunk = await src.read(CHUNK_SIZE)
            if not chunk:
                break
            bytes_read += len(chunk)

            out = await loop.run_in_executor(_executor, compressor.compress, chunk)
            if out:
                await dst.write(out)
                bytes_written += len(out)

            if bytes_read >= next_log:
                logger.debug("compression_progress", processed_mb=round(bytes_read / 1048576, 1))
                next_log += _LOG_EVERY_BYTES

        tail = compressor.flush()
        await dst.write(tail)
        bytes_written += len(tail)
        await dst.flush()

    return bytes_written


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("partial_archive_cleanup_failed", path=str(path), error=str(e))


def parse_archive_header(prefix: bytes) -> dict | None:
    """
    Decode the header object from the first bytes of an archive.

    ``prefix`` may be a truncated gzip stream; only the part before
    ``"data"`` is needed. Returns None if the header is not complete.
    """
    try:
        text = zlib.decompressobj(_GZIP_WBITS).decompress(prefix)
    except zlib.error:
        return None

    decoded = text.decode("utf-8", errors="ignore")
    marker = decoded.find(',"data":')
    if marker < 0:
        return None

    try:
        header = json.loads(decoded[:marker] + "}")
    except ValueError:
        return None
    return header if isinstance(header, dict) else None
