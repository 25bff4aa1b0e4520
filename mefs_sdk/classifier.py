"""
Error classification for gateway responses.

Decodes a failed response into an ErrorResponse and answers the two
questions the executor asks on every failed attempt: is this error code
worth retrying, and is this HTTP status worth retrying.
"""

import asyncio
import json
import xml.etree.ElementTree as ET
from http import HTTPStatus
from typing import Any, Mapping, Optional

import aiohttp
import requests

from .exceptions import ErrorResponse

# Gateway error codes for which resending the same request may succeed.
RETRYABLE_CODES = frozenset({
    "RequestError",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "InternalError",
    "ExpiredToken",
    "ExpiredTokenException",
    "SlowDown",
    "ServiceUnavailable",
})

RETRYABLE_STATUSES = frozenset({
    429,  # Too Many Requests
    499,  # Client Closed Request
    500,
    502,
    503,
    504,
    520,  # Unknown origin error
})

SUCCESS_STATUSES = frozenset({200, 204, 206})

# Substrings in transport errors that mean the peer dropped the connection.
_CLOSED_MARKERS = ("EOF", "closed", "Connection aborted", "reset by peer", "RemoteDisconnected")


def is_code_retryable(code: str) -> bool:
    """Return True if a gateway error code is transient."""
    return code in RETRYABLE_CODES


def is_status_retryable(status: int) -> bool:
    """Return True if an HTTP status is transient."""
    return status in RETRYABLE_STATUSES


def is_request_error_retryable(exc: BaseException) -> bool:
    """
    Decide whether a transport exception is transient.

    TLS and certificate failures, malformed URLs and unsupported schemes
    will fail the same way every time; connection drops and timeouts may not.
    """
    if isinstance(exc, (requests.exceptions.SSLError, aiohttp.ClientSSLError)):
        return False
    if isinstance(exc, (
        requests.exceptions.InvalidURL,
        requests.exceptions.InvalidSchema,
        requests.exceptions.MissingSchema,
        requests.exceptions.InvalidHeader,
        aiohttp.InvalidURL,
    )):
        return False
    if isinstance(exc, (
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        requests.exceptions.ChunkedEncodingError,
        aiohttp.ClientConnectionError,
        aiohttp.ClientPayloadError,
        asyncio.TimeoutError,
        TimeoutError,
    )):
        return True
    return False


def is_connection_closed(exc: BaseException) -> bool:
    """Return True if a transport error reads as the peer closing the connection."""
    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return True
    text = str(exc)
    return any(marker in text for marker in _CLOSED_MARKERS)


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    if not headers:
        return ""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, val in headers.items():
            if key.lower() == lowered:
                return val
        return ""
    return value


def _status_fallback(status: int, bucket_name: str, object_name: str):
    if status == 301:
        return "PermanentRedirect", "Moved Permanently"
    if status == 307:
        return "Redirect", "Temporary redirect"
    if status == 400:
        return "BadRequest", "Bad request"
    if status == 403:
        return "AccessDenied", "Access denied"
    if status == 404:
        if object_name:
            return "NoSuchKey", "The specified key does not exist."
        if bucket_name:
            return "NoSuchBucket", "The specified bucket does not exist."
        return "NotFound", "Request resource not found"
    if status in (405, 501):
        return "MethodNotAllowed", "The specified method is not allowed against this resource."
    if status == 409:
        if bucket_name:
            return "NoSuchBucket", "The specified bucket does not exist."
        return "Conflict", "Request resource conflicts"
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = f"HTTP {status}"
    return phrase.replace(" ", ""), phrase


def _decode_xml(body: bytes) -> Optional[dict]:
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return None
    if root.tag.rsplit("}", 1)[-1] != "Error":
        return None
    fields = {}
    for child in root:
        fields[child.tag.rsplit("}", 1)[-1].lower()] = (child.text or "").strip()
    return fields


def _decode_json(body: bytes) -> Optional[dict]:
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    fields = {}
    for key, value in data.items():
        if value is None:
            continue
        fields[str(key).lower()] = value if isinstance(value, str) else str(value)
    return fields


def decode_error_body(body: bytes, content_type: str = "") -> Optional[dict]:
    """Decode an error body into lower-cased field names, or None if undecodable."""
    if not body or not body.strip():
        return None
    stripped = body.lstrip()
    if "json" in content_type or stripped.startswith(b"{"):
        return _decode_json(body)
    return _decode_xml(body)


def to_error_response(
    status: int,
    headers: Optional[Mapping[str, str]],
    body: bytes,
    bucket_name: str = "",
    object_name: str = "",
    response: Any = None,
) -> ErrorResponse:
    """
    Build an ErrorResponse from a failed HTTP exchange.

    Args:
        status: HTTP status code
        headers: Response headers
        body: Fully buffered response body
        bucket_name: Bucket the request targeted, if any
        object_name: Object the request targeted, if any
        response: Buffered response to attach for the caller

    Returns:
        ErrorResponse with code, message and region hint filled in
    """
    fields = decode_error_body(body, _header(headers, "Content-Type")) or {}

    code = fields.get("code", "")
    message = fields.get("message", "")
    # RPC-style gateways report a numeric code and an error type.
    if code.isdigit() or not code:
        fallback_code, fallback_message = _status_fallback(status, bucket_name, object_name)
        code = fallback_code
        message = message or fallback_message

    return ErrorResponse(
        code=code,
        message=message,
        bucket_name=fields.get("bucketname") or bucket_name,
        object_name=fields.get("key") or object_name,
        region=fields.get("region") or _header(headers, "x-amz-bucket-region"),
        request_id=fields.get("requestid") or _header(headers, "x-amz-request-id"),
        host_id=fields.get("hostid") or _header(headers, "x-amz-id-2"),
        resource=fields.get("resource", ""),
        status_code=status,
        response=response,
    )
