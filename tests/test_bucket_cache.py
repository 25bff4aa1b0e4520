import threading

import pytest

from mefs_sdk.bucket_cache import (
    DEFAULT_REGION,
    BucketLocationCache,
    normalize_location,
    process_bucket_location_response,
)
from mefs_sdk.exceptions import ErrorResponse


def test_get_missing_bucket():
    cache = BucketLocationCache()
    assert cache.get("photos") == ("", False)


def test_set_is_idempotent():
    cache = BucketLocationCache()

    cache.set("photos", "eu-west-1")
    cache.set("photos", "eu-west-1")

    assert cache.get("photos") == ("eu-west-1", True)
    assert len(cache) == 1


def test_set_replaces_region():
    cache = BucketLocationCache()
    cache.set("photos", "us-east-1")
    cache.set("photos", "eu-central-1")
    assert cache.get("photos") == ("eu-central-1", True)


def test_delete_removes_entry_and_ignores_missing():
    cache = BucketLocationCache()
    cache.set("photos", "us-east-1")

    cache.delete("photos")
    cache.delete("photos")

    assert cache.get("photos") == ("", False)
    assert len(cache) == 0


def test_concurrent_readers_and_writers():
    cache = BucketLocationCache()
    errors = []

    def writer(n):
        for i in range(200):
            cache.set(f"bucket-{n}-{i % 10}", f"region-{i}")
            if i % 3 == 0:
                cache.delete(f"bucket-{n}-{i % 10}")

    def reader(n):
        for i in range(200):
            region, found = cache.get(f"bucket-{n}-{i % 10}")
            if found and not region.startswith("region-"):
                errors.append(region)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert not any(t.is_alive() for t in threads)
    assert errors == []


@pytest.mark.parametrize("location,expected", [
    (None, DEFAULT_REGION),
    ("", DEFAULT_REGION),
    ("EU", "eu-west-1"),
    ("ap-south-1", "ap-south-1"),
])
def test_normalize_location(location, expected):
    assert normalize_location(location) == expected


def test_location_from_region_mismatch_error():
    err = ErrorResponse("AuthorizationHeaderMalformed", region="eu-north-1")
    assert process_bucket_location_response(error=err) == "eu-north-1"


def test_location_from_access_denied_without_hint():
    err = ErrorResponse("AccessDenied")
    assert process_bucket_location_response(error=err) == DEFAULT_REGION


def test_location_lookup_other_errors_are_raised():
    err = ErrorResponse("NoSuchBucket")
    with pytest.raises(ErrorResponse):
        process_bucket_location_response(error=err)
