# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retry policy for remote API calls.

with_retry() runs a coroutine factory up to ``max_attempts`` times with
exponential backoff and jitter, honoring the classified error's
retry-after hint. safe_call() is the best-effort variant: it never raises
and returns a CallResult instead.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, FrozenSet, TypeVar

import structlog

from s3snap.remote.errors import RemoteApiError, classify_error

logger = structlog.get_logger()

T = TypeVar("T")

RETRYABLE_CODES = frozenset({429, 500, 502, 503, 504})

# Reasons meaning the request was rejected before it was processed.
RATE_LIMIT_REASONS = frozenset(
    {
        "rateLimitExceeded",
        "userRateLimitExceeded",
        "quotaExceeded",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
    }
)

RETRYABLE_REASONS = RATE_LIMIT_REASONS | frozenset(
    {
        "backendError",
        "InternalError",
        "ServiceUnavailable",
        "RequestTimeout",
    }
)

RETRYABLE_STATUSES = frozenset(
    {
        "RESOURCE_EXHAUSTED",
        "UNAVAILABLE",
        "INTERNAL",
        "ABORTED",
        "DEADLINE_EXCEEDED",
    }
)


@dataclass(frozen=True)
class RetryOptions:
    """Retry tuning for a single call site."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: float = 0.2
    # False for calls that create something remotely; see is_retryable().
    idempotent: bool = True
    retry_on_codes: FrozenSet[int] = RETRYABLE_CODES
    retry_on_reasons: FrozenSet[str] = RETRYABLE_REASONS
    retry_on_statuses: FrozenSet[str] = RETRYABLE_STATUSES
    context: str = ""


@dataclass
class CallResult(Generic[T]):
    """Outcome of a best-effort remote call."""

    ok: bool
    data: T | None = None
    error: RemoteApiError | None = field(default=None)


def is_retryable(error: RemoteApiError, options: RetryOptions) -> bool:
    """
    Decide whether a classified error may be retried.

    Non-idempotent calls are retried only when the service rejected the
    request outright (429 or a rate-limit reason).
    """
    if not options.idempotent:
        return error.code == 429 or error.reason in RATE_LIMIT_REASONS

    if error.code in options.retry_on_codes:
        return True
    if error.reason in options.retry_on_reasons:
        return True
    if error.status and error.status in options.retry_on_statuses:
        return True
    return False


def compute_delay(attempt: int, error: RemoteApiError, options: RetryOptions) -> float:
    """
    Backoff before the next attempt, in seconds.

    ``attempt`` is zero-based. Jitter applies to the exponential part only so
    the retry-after hint stays a hard floor.
    """
    backoff = min(options.base_delay * (2**attempt), options.max_delay)
    jitter_factor = 1 + (random.random() * 2 - 1) * options.jitter
    delay = max(0.0, backoff * jitter_factor)
    if error.retry_after_seconds:
        delay = max(delay, float(error.retry_after_seconds))
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with bounded retries.

    Raises:
        RemoteApiError: The last classified error once attempts are exhausted
            or the error is not retryable.
    """
    options = options or RetryOptions()
    attempt = 0

    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_error(e)
            last_attempt = attempt >= options.max_attempts - 1

            if last_attempt or not is_retryable(error, options):
                logger.debug(
                    "remote_call_failed",
                    context=options.context,
                    attempt=attempt + 1,
                    code=error.code,
                    reason=error.reason,
                )
                if error is e:
                    raise
                raise error from e

            delay = compute_delay(attempt, error, options)
            logger.warning(
                "remote_call_retry_scheduled",
                context=options.context,
                attempt=attempt + 1,
                code=error.code,
                reason=error.reason,
                delay_seconds=round(delay, 3),
            )
            attempt += 1
            await sleep(delay)


async def safe_call(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CallResult[T]:
    """Run ``operation`` through with_retry() and capture the outcome."""
    try:
        data = await with_retry(operation, options, sleep)
    except RemoteApiError as e:
        return CallResult(ok=False, error=e)
    return CallResult(ok=True, data=data)
