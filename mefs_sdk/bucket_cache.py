"""
In-memory bucket location cache.

Holds the region of each bucket a client has talked to so location
lookups are not repeated, and so region-mismatch errors can correct it.
"""

import threading
from typing import Dict, Optional, Tuple

from .exceptions import ErrorResponse

DEFAULT_REGION = "us-east-1"

# Error codes whose response carries the region the request should have used.
REGION_MISMATCH_CODES = frozenset({
    "AuthorizationHeaderMalformed",
    "InvalidRegion",
    "AccessDenied",
})


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class BucketLocationCache:
    """
    Mapping of bucket name to region, shared by every call of one client.

    Lookups run concurrently; set and delete exclude everyone else for the
    duration of a single mapping update. The mapping itself is never exposed.
    """

    def __init__(self):
        self._lock = _ReadWriteLock()
        self._items: Dict[str, str] = {}

    def get(self, bucket_name: str) -> Tuple[str, bool]:
        """Return ``(region, found)`` for a bucket."""
        self._lock.acquire_read()
        try:
            if bucket_name in self._items:
                return self._items[bucket_name], True
            return "", False
        finally:
            self._lock.release_read()

    def set(self, bucket_name: str, region: str) -> None:
        self._lock.acquire_write()
        try:
            self._items[bucket_name] = region
        finally:
            self._lock.release_write()

    def delete(self, bucket_name: str) -> None:
        self._lock.acquire_write()
        try:
            self._items.pop(bucket_name, None)
        finally:
            self._lock.release_write()

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._items)
        finally:
            self._lock.release_read()


def normalize_location(location: Optional[str]) -> str:
    """Map a raw location constraint to a region name."""
    if not location:
        return DEFAULT_REGION
    # Legacy constraint for the EU partition.
    if location == "EU":
        return "eu-west-1"
    return location


def process_bucket_location_response(
    location: Optional[str] = None,
    error: Optional[ErrorResponse] = None,
) -> str:
    """
    Turn the outcome of a bucket location lookup into a region.

    Args:
        location: Location constraint returned by a successful lookup
        error: Gateway error returned by a failed lookup

    Returns:
        Region name

    Raises:
        ErrorResponse: If the error does not carry a usable region
    """
    if error is not None:
        # Region-mismatch and access errors may come from an anonymous
        # request; fall back to the hint and let the caller's policy decide.
        if error.code in REGION_MISMATCH_CODES:
            return error.region or DEFAULT_REGION
        raise error
    return normalize_location(location)
