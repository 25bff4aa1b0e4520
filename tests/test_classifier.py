import asyncio

import aiohttp
import pytest
import requests

from mefs_sdk.classifier import (
    decode_error_body,
    is_code_retryable,
    is_connection_closed,
    is_request_error_retryable,
    is_status_retryable,
    to_error_response,
)

from conftest import error_xml


@pytest.mark.parametrize("code", [
    "RequestError", "RequestTimeout", "Throttling", "ThrottlingException",
    "RequestLimitExceeded", "RequestThrottled", "InternalError", "ExpiredToken",
    "ExpiredTokenException", "SlowDown", "ServiceUnavailable",
])
def test_retryable_codes(code):
    assert is_code_retryable(code)


@pytest.mark.parametrize("code", [
    "AccessDenied", "NoSuchBucket", "NoSuchKey", "InvalidArgument",
    "MalformedXML", "SignatureDoesNotMatch", "",
])
def test_fatal_codes(code):
    assert not is_code_retryable(code)


@pytest.mark.parametrize("status", [429, 499, 500, 502, 503, 504, 520])
def test_retryable_statuses(status):
    assert is_status_retryable(status)


@pytest.mark.parametrize("status", [200, 301, 400, 403, 404, 409, 501])
def test_fatal_statuses(status):
    assert not is_status_retryable(status)


@pytest.mark.parametrize("exc,expected", [
    (requests.exceptions.ConnectionError("refused"), True),
    (requests.exceptions.ReadTimeout("timed out"), True),
    (requests.exceptions.ChunkedEncodingError("broken"), True),
    (requests.exceptions.SSLError("certificate verify failed"), False),
    (requests.exceptions.InvalidURL("bad"), False),
    (requests.exceptions.MissingSchema("no scheme"), False),
    (aiohttp.ServerDisconnectedError(), True),
    (asyncio.TimeoutError(), True),
    (ValueError("unrelated"), False),
])
def test_request_error_retryability(exc, expected):
    assert is_request_error_retryable(exc) is expected


def test_connection_closed_detection():
    assert is_connection_closed(requests.exceptions.ConnectionError("Connection reset by peer"))
    assert is_connection_closed(aiohttp.ServerDisconnectedError())
    assert not is_connection_closed(requests.exceptions.ConnectionError("Name or service not known"))


def test_decode_xml_error():
    fields = decode_error_body(error_xml("NoSuchKey", "gone", region="eu-west-1"))
    assert fields["code"] == "NoSuchKey"
    assert fields["message"] == "gone"
    assert fields["region"] == "eu-west-1"


def test_decode_json_error_any_key_case():
    fields = decode_error_body(b'{"Code": "SlowDown", "message": "easy", "REGION": "us-west-2"}')
    assert fields == {"code": "SlowDown", "message": "easy", "region": "us-west-2"}


def test_decode_garbage_returns_none():
    assert decode_error_body(b"<html>oops</html>") is None
    assert decode_error_body(b"") is None


def test_to_error_response_from_xml():
    err = to_error_response(
        403,
        {"x-amz-request-id": "req-9", "x-amz-id-2": "host-9"},
        error_xml("AccessDenied", "nope", region="eu-west-1"),
        bucket_name="photos",
    )
    assert err.code == "AccessDenied"
    assert err.message == "nope"
    assert err.region == "eu-west-1"
    assert err.bucket_name == "photos"
    assert err.request_id == "req-9"
    assert err.host_id == "host-9"
    assert err.status_code == 403


def test_region_falls_back_to_header():
    err = to_error_response(400, {"X-Amz-Bucket-Region": "ap-east-1"}, error_xml("AuthorizationHeaderMalformed"))
    assert err.region == "ap-east-1"


@pytest.mark.parametrize("status,bucket,obj,code", [
    (301, "", "", "PermanentRedirect"),
    (307, "", "", "Redirect"),
    (400, "", "", "BadRequest"),
    (403, "b", "", "AccessDenied"),
    (404, "b", "k", "NoSuchKey"),
    (404, "b", "", "NoSuchBucket"),
    (404, "", "", "NotFound"),
    (405, "", "", "MethodNotAllowed"),
    (501, "", "", "MethodNotAllowed"),
    (409, "", "", "Conflict"),
    (503, "", "", "ServiceUnavailable"),
])
def test_status_fallback_for_empty_body(status, bucket, obj, code):
    err = to_error_response(status, {}, b"", bucket_name=bucket, object_name=obj)
    assert err.code == code


def test_numeric_gateway_code_uses_status_mapping():
    err = to_error_response(500, {"Content-Type": "application/json"}, b'{"Message": "lfs not started", "Code": 0}')
    assert err.code == "InternalServerError"
    assert err.message == "lfs not started"
