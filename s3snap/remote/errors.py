# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote API error classification.

Every failure coming back from the remote object store is normalized into a
RemoteApiError carrying a stable reason code, a human-readable message and an
optional retry-after hint. Callers branch on ``code``/``reason`` and show
``message`` to users; they never parse upstream text.

Recognised shapes, in priority order:

1. Errors carrying HTTP response data: ``botocore.exceptions.ClientError`` and
   any exception with a ``response`` object exposing a status, headers and a
   JSON error body (httpx, requests, aiohttp style). A structured ErrorInfo
   detail block wins over the legacy ``errors[0]`` array.
2. Anything else is wrapped as an application error with code 500.
"""

import json
import math
from datetime import datetime, UTC
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping

from s3snap.exceptions import S3SnapError

ERROR_INFO_TYPE = "type.googleapis.com/google.rpc.ErrorInfo"

# Per-code messages. A dict holds per-reason overrides plus an optional default.
ERROR_MESSAGES: Dict[int, Dict[str, str] | str] = {
    400: {
        "badRequest": "Invalid request",
        "invalid_grant": (
            "Stored credentials are invalid or expired. "
            "Re-authorize the storage account and try again."
        ),
        "InvalidArgument": "Invalid request argument",
        "EntityTooLarge": "Archive exceeds the maximum object size for a single upload",
        "ExpiredToken": "Storage credentials have expired. Refresh them and try again.",
        "RequestTimeTooSkewed": "Server clock is out of sync with the storage service",
        "default": "Invalid request",
    },
    401: "Authentication failed. Check the storage credentials.",
    403: {
        "storageQuotaExceeded": "Storage quota exceeded",
        "userRateLimitExceeded": "Request rate limit exceeded. Try again in a few minutes.",
        "rateLimitExceeded": "Request rate limit exceeded. Try again in a few minutes.",
        "forbidden": "Not allowed to perform this action",
        "insufficientFilePermissions": "Not allowed to access this file",
        "AccessDenied": "Access denied to the backup bucket",
        "InvalidAccessKeyId": "Storage access key is not recognised",
        "SignatureDoesNotMatch": "Storage secret key does not match the access key",
        "default": "Permission denied or quota exceeded",
    },
    404: {
        "NoSuchBucket": "Backup bucket does not exist",
        "NoSuchUpload": "Multipart upload no longer exists",
        "default": "Backup file or folder not found",
    },
    409: "Conflict: the object already exists or is being modified",
    429: "Too many requests. Wait a moment before retrying.",
    500: "Internal storage service error. Try again.",
    503: {
        "SlowDown": "Storage service is throttling requests. Try again shortly.",
        "default": "Storage service temporarily unavailable. Try again in a few minutes.",
    },
}

SERVICE_ACCOUNT_QUOTA_HINT = "Service Accounts do not have storage quota"


class RemoteApiError(S3SnapError):
    """
    Classified remote API failure.

    Construct through classify_error(); the raw exception is kept on
    ``original_error`` for logging.
    """

    def __init__(
        self,
        code: int,
        reason: str,
        domain: str,
        message: str,
        status: str | None = None,
        metadata: Dict[str, str] | None = None,
        retry_after_seconds: int | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.status = status
        self.reason = reason
        self.domain = domain
        self.metadata = metadata
        self.retry_after_seconds = retry_after_seconds
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "status": self.status,
            "reason": self.reason,
            "domain": self.domain,
            "message": self.message,
            "metadata": self.metadata,
            "retry_after_seconds": self.retry_after_seconds,
        }


def classify_error(error: BaseException) -> RemoteApiError:
    """
    Turn any exception raised by a remote call into a RemoteApiError.

    Classifying an already classified error returns it unchanged.
    """
    if isinstance(error, RemoteApiError):
        return error

    details = _extract_boto_details(error)
    if details is None:
        details = _extract_http_details(error)

    if details is None:
        return RemoteApiError(
            code=500,
            reason="unknown",
            domain="application",
            message=str(error) or type(error).__name__,
            original_error=error,
        )

    return RemoteApiError(
        code=details["code"],
        status=details.get("status"),
        reason=details["reason"],
        domain=details["domain"],
        message=human_message(details["code"], details["reason"], details["raw_message"]),
        metadata=details.get("metadata"),
        retry_after_seconds=details.get("retry_after_seconds"),
        original_error=error,
    )


def human_message(code: int, reason: str, raw_message: str) -> str:
    """Map a (code, reason) pair to a user-facing message."""
    if raw_message and SERVICE_ACCOUNT_QUOTA_HINT in raw_message:
        return (
            "Service accounts have no storage quota. "
            "Use credentials for an account that owns storage."
        )

    code_messages = ERROR_MESSAGES.get(code)

    if isinstance(code_messages, str):
        return code_messages

    if isinstance(code_messages, dict):
        message = code_messages.get(reason) or code_messages.get("default")
        if message:
            return message
        if raw_message:
            return raw_message

    return raw_message or f"API error (code {code})"


def parse_retry_after(value: Any) -> int | None:
    """
    Parse a Retry-After header value into whole seconds.

    Accepts delta-seconds or an HTTP date; dates in the past give 0.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return max(0, math.floor(value))

    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    try:
        seconds = float(trimmed)
    except ValueError:
        seconds = None
    if seconds is not None and math.isfinite(seconds):
        return max(0, math.floor(seconds))

    try:
        when = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - datetime.now(UTC)).total_seconds()
    return max(0, math.ceil(delta))


def _extract_boto_details(error: BaseException) -> dict | None:
    """Read a botocore ClientError-shaped ``response`` dict."""
    response = getattr(error, "response", None)
    if not isinstance(response, Mapping) or "Error" not in response:
        return None

    body = response.get("Error") or {}
    meta = response.get("ResponseMetadata") or {}
    headers = meta.get("HTTPHeaders") or {}

    code = _coerce_code(meta.get("HTTPStatusCode"), body.get("Code"))

    return {
        "code": code,
        "status": None,
        "reason": body.get("Code") or "unknown",
        "domain": "global",
        "raw_message": body.get("Message") or str(error),
        "retry_after_seconds": parse_retry_after(_header(headers, "retry-after")),
    }


def _extract_http_details(error: BaseException) -> dict | None:
    """Read an HTTP client error carrying a response object with a JSON body."""
    response = getattr(error, "response", None)
    if response is None or isinstance(response, Mapping):
        return None

    http_status = getattr(response, "status_code", None)
    if http_status is None:
        http_status = getattr(response, "status", None)
    if not isinstance(http_status, int):
        return None

    headers = getattr(response, "headers", None) or {}
    body = _response_json(response)
    api_error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(api_error, dict):
        api_error = {}

    code = _coerce_code(http_status, api_error.get("code", getattr(error, "code", None)))
    retry_after = parse_retry_after(_header(headers, "retry-after"))
    fallback_message = api_error.get("message") or str(error)

    info = _find_error_info(api_error)
    if info is not None:
        return {
            "code": code,
            "status": api_error.get("status"),
            "reason": info.get("reason") or "unknown",
            "domain": info.get("domain") or "global",
            "raw_message": fallback_message,
            "metadata": info.get("metadata"),
            "retry_after_seconds": retry_after,
        }

    errors = api_error.get("errors")
    first = errors[0] if isinstance(errors, list) and errors else {}
    if not isinstance(first, dict):
        first = {}

    return {
        "code": code,
        "status": api_error.get("status"),
        "reason": first.get("reason") or "unknown",
        "domain": first.get("domain") or "global",
        "raw_message": first.get("message") or fallback_message,
        "retry_after_seconds": retry_after,
    }


def _find_error_info(api_error: dict) -> dict | None:
    details = api_error.get("details")
    if not isinstance(details, list):
        return None
    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == ERROR_INFO_TYPE:
            return detail
    return None


def _response_json(response: Any) -> Any:
    reader = getattr(response, "json", None)
    if callable(reader):
        try:
            return reader()
        except (ValueError, TypeError):
            return None

    raw = getattr(response, "body", None)
    if raw is None:
        raw = getattr(response, "data", None)
    if isinstance(raw, (bytes, str)):
        try:
            return json.loads(raw)
        except ValueError:
            return None
    return raw


def _coerce_code(http_status: Any, fallback: Any) -> int:
    for candidate in (http_status, fallback):
        if isinstance(candidate, bool):
            continue
        if isinstance(candidate, int):
            return candidate
        if isinstance(candidate, str) and candidate.isdigit():
            return int(candidate)
    return 500


def _header(headers: Any, name: str) -> Any:
    getter = getattr(headers, "get", None)
    if getter is None:
        return None
    value = getter(name)
    if value is None:
        value = getter(name.title())
    return value
