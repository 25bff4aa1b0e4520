from unittest.mock import MagicMock

import pytest

from mefs_sdk.exceptions import InvalidResponseError
from mefs_sdk.request import RequestBuilder, RequestMetadata, decode_json, encode_option

from conftest import make_response


def test_metadata_path():
    assert RequestMetadata(command="lfs/list_buckets").path == "/api/v0/lfs/list_buckets"
    assert RequestMetadata(command="/id/").path == "/api/v0/id"


def test_encode_option():
    assert encode_option(True) == "true"
    assert encode_option(False) == "false"
    assert encode_option(3) == "3"


def test_builder_collects_arguments_and_options():
    builder = (
        RequestBuilder(MagicMock(), "lfs/list_objects", "photos")
        .arguments("extra")
        .option("prefix", "2024/")
        .option("Avail", True)
        .option("skipped", None)
        .bucket("photos")
        .region("eu-west-1")
    )

    metadata = builder.metadata()

    assert metadata.command == "lfs/list_objects"
    assert metadata.query_values == [("arg", "photos"), ("arg", "extra"), ("prefix", "2024/"), ("Avail", "true")]
    assert metadata.bucket_name == "photos"
    assert metadata.bucket_location == "eu-west-1"
    assert metadata.content_body is None


def test_builder_body_is_seekable_buffer():
    metadata = RequestBuilder(MagicMock(), "block/put").body(b"data", 4).header("Content-Type", "x").metadata()
    assert metadata.content_body.read() == b"data"
    assert metadata.content_length == 4
    assert metadata.custom_header == {"Content-Type": "x"}


def test_exec_decodes_and_closes_response():
    client = MagicMock()
    response = make_response(200, b'{"Version": "0.4.0", "Commit": "abc"}')
    response.close = MagicMock()
    client.execute.return_value = response

    data = RequestBuilder(client, "version").exec()

    assert data == {"Version": "0.4.0", "Commit": "abc"}
    response.close.assert_called_once()
    method, metadata = client.execute.call_args.args
    assert method == "POST"
    assert metadata.command == "version"


def test_decode_json_variants():
    assert decode_json(b"") is None
    assert decode_json(b'"just a string"') == "just a string"
    assert decode_json(b'{"Key": 1}\n{"Key": 2}\n') == {"Key": 2}


def test_decode_json_rejects_garbage():
    with pytest.raises(InvalidResponseError):
        decode_json(b"not json at all")
