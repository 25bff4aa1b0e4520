"""
Utility functions for MEFS SDK.

This module provides helpers for request bodies, content hashing, name
validation, endpoint resolution and response header filtering.
"""

import base64
import hashlib
import io
import math
import os
import re
import sys
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, Tuple, Union

from .exceptions import ConfigurationError, InvalidArgumentError

DEFAULT_PATH_ROOT = Path("~") / ".mefs"
DEFAULT_API_FILE = "api"
ENV_DIR = "MEFS_PATH"

_BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_ADDRESS_RE = re.compile(r"^(\d+\.){3}\d+$")
_MULTIADDR_RE = re.compile(
    r"^/(?P<proto>ip4|ip6|dns|dns4|dns6)/(?P<host>[^/]+)/tcp/(?P<port>\d+)(?P<rest>/.*)?$"
)

# Headers stripped from object metadata returned to callers.
DEFAULT_FILTER_KEYS = [
    "Connection",
    "Transfer-Encoding",
    "Accept-Ranges",
    "Date",
    "Server",
    "Vary",
    "x-amz-bucket-region",
    "x-amz-request-id",
    "x-amz-id-2",
    "Content-Security-Policy",
    "X-Xss-Protection",
]


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB")
    """
    if size_bytes <= 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB", "PB"]
    i = int(math.floor(math.log(size_bytes, 1024)))

    if i >= len(size_names):
        i = len(size_names) - 1

    p = math.pow(1024, i)
    size = round(size_bytes / p, 2)

    return f"{size} {size_names[i]}"


def md5_base64(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_materials(data: bytes, secure: bool, anonymous: bool = False) -> Tuple[str, str]:
    """
    Compute the content hashes a request should carry.

    Over TLS only the MD5 is needed; over plain HTTP the SHA-256 protects
    the payload. Anonymous requests carry only the MD5.

    Returns:
        ``(content_md5_base64, content_sha256_hex)``, either may be empty
    """
    if anonymous or secure:
        return md5_base64(data), ""
    return "", sha256_hex(data)


def is_standard_stream(body: Any) -> bool:
    """Return True for the process's standard streams or their binary buffers."""
    for stream in (sys.stdin, sys.stdout, sys.stderr, sys.__stdin__, sys.__stdout__, sys.__stderr__):
        if stream is None:
            continue
        if body is stream or body is getattr(stream, "buffer", None):
            return True
    return False


def is_seekable(body: Any) -> bool:
    """
    Return True if a request body can be rewound for another attempt.

    Live standard streams report seekable on some platforms but cannot be
    replayed, so they never count.
    """
    if body is None or is_standard_stream(body):
        return False
    seekable = getattr(body, "seekable", None)
    if callable(seekable):
        try:
            return bool(seekable())
        except (OSError, ValueError):
            return False
    return callable(getattr(body, "seek", None))


def as_body(data: Union[bytes, bytearray, str, BinaryIO, Iterable[bytes], None]):
    """Wrap in-memory payloads in a seekable buffer; pass readers through."""
    if data is None:
        return None
    if isinstance(data, str):
        data = data.encode("utf-8")
    if isinstance(data, (bytes, bytearray)):
        return io.BytesIO(bytes(data))
    return data


def body_length(body: Any) -> int:
    """Length of a seekable body from its current position, or -1 if unknown."""
    if not is_seekable(body):
        return -1
    try:
        current = body.tell()
        end = body.seek(0, os.SEEK_END)
        body.seek(current)
    except (OSError, ValueError, AttributeError):
        return -1
    return end - current


def check_valid_bucket_name(bucket_name: str) -> None:
    """Validate a bucket name, raising InvalidArgumentError if it is unusable."""
    if not bucket_name or not bucket_name.strip():
        raise InvalidArgumentError("Bucket name cannot be empty", field="bucket_name")
    if len(bucket_name) < 3:
        raise InvalidArgumentError("Bucket name cannot be shorter than 3 characters", field="bucket_name")
    if len(bucket_name) > 63:
        raise InvalidArgumentError("Bucket name cannot be longer than 63 characters", field="bucket_name")
    if _IP_ADDRESS_RE.match(bucket_name):
        raise InvalidArgumentError("Bucket name cannot be an ip address", field="bucket_name")
    if ".." in bucket_name or ".-" in bucket_name or "-." in bucket_name:
        raise InvalidArgumentError("Bucket name contains invalid characters", field="bucket_name")
    if not _BUCKET_NAME_RE.match(bucket_name):
        raise InvalidArgumentError("Bucket name contains invalid characters", field="bucket_name")


def check_valid_object_name(object_name: str) -> None:
    if not object_name:
        raise InvalidArgumentError("Object name cannot be empty", field="object_name")
    try:
        object_name.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidArgumentError("Object name with non UTF-8 strings are not supported", field="object_name")


def filter_header(headers: Dict[str, str], filter_keys: Iterable[str]) -> Dict[str, str]:
    """Return a copy of headers without the given keys (case-insensitive)."""
    drop = {key.lower() for key in filter_keys}
    return {key: value for key, value in headers.items() if key.lower() not in drop}


def extract_obj_metadata(headers: Dict[str, str]) -> Dict[str, str]:
    """Keep only user-meaningful metadata headers of an object response."""
    filter_keys = ["ETag", "Content-Length", "Last-Modified", "Content-Type", "Expires"]
    return filter_header(headers, filter_keys + DEFAULT_FILTER_KEYS)


def read_local_api_endpoint() -> str:
    """Read the gateway address the local node writes to ``$MEFS_PATH/api``."""
    base_dir = Path(os.getenv(ENV_DIR) or DEFAULT_PATH_ROOT).expanduser()
    api_file = base_dir / DEFAULT_API_FILE
    try:
        return api_file.read_text().strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read local api file {api_file}: {e}", config_key=ENV_DIR)


def resolve_endpoint(endpoint: str, secure: bool) -> str:
    """
    Turn a user-supplied endpoint into a base URL.

    Accepts ``host:port``, a full URL, or a multiaddr such as
    ``/ip4/127.0.0.1/tcp/5001``.
    """
    endpoint = endpoint.strip()
    if not endpoint:
        raise ConfigurationError("Endpoint cannot be empty", config_key="endpoint")

    match = _MULTIADDR_RE.match(endpoint)
    if match:
        host = match.group("host")
        if match.group("proto") == "ip6":
            host = f"[{host}]"
        endpoint = f"{host}:{match.group('port')}"
    elif endpoint.startswith("/"):
        raise ConfigurationError(f"Unsupported multiaddr: {endpoint}", config_key="endpoint")

    if endpoint.startswith(("http://", "https://")):
        return endpoint.rstrip("/")
    scheme = "https" if secure else "http"
    return f"{scheme}://{endpoint.rstrip('/')}"
