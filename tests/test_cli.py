import json
import stat
from unittest.mock import ANY, MagicMock

import pytest
from click.testing import CliRunner

from mefs_sdk import cli as cli_module
from mefs_sdk.exceptions import ErrorResponse
from mefs_sdk.models import BucketInfo, ObjectInfo, PeerList, PeerState, UserPrivMessage

from conftest import ADDRESS


@pytest.fixture
def client(monkeypatch):
    client = MagicMock()
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(cli_module, "MefsClient", factory)
    client.factory = factory
    return client


@pytest.fixture
def run(tmp_path):
    config_file = tmp_path / "config.json"
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(cli_module.cli, ["--config-file", str(config_file), *args], input=input)

    invoke.config_file = config_file
    return invoke


def test_config_saves_private_file(client, run):
    result = run("config", "--endpoint", "gw:5001", "--access-key", ADDRESS, "--secret-key", "s3cret")

    assert result.exit_code == 0
    assert "Configuration saved" in result.output
    assert "Connection test successful" in result.output
    saved = json.loads(run.config_file.read_text())
    assert saved["endpoint"] == "gw:5001"
    assert saved["access_key"] == ADDRESS
    assert stat.S_IMODE(run.config_file.stat().st_mode) == 0o600
    client.factory.assert_called_once_with(
        endpoint="gw:5001", access_key=ADDRESS, secret_key="s3cret", region=None, secure=False
    )


def test_commands_use_saved_config(client, run):
    run.config_file.write_text(json.dumps({"endpoint": "gw:5001", "access_key": ADDRESS,
                                           "secret_key": "s", "region": "eu-west-1"}))
    client.version.return_value = ("0.4.0", "abc")

    result = run("version")

    assert result.exit_code == 0
    assert "0.4.0" in result.output
    assert client.factory.call_args.kwargs["region"] == "eu-west-1"


def test_ls_buckets(client, run):
    client.list_buckets.return_value = [BucketInfo(name="photos"), BucketInfo(name="backups")]

    result = run("ls")

    assert result.exit_code == 0
    assert "Buckets" in result.output
    assert "photos" in result.output
    assert "backups" in result.output


def test_ls_no_buckets(client, run):
    client.list_buckets.return_value = []

    result = run("ls")

    assert "No buckets found." in result.output


def test_ls_objects_with_prefix(client, run):
    client.list_objects.return_value = [ObjectInfo(key="2024/cat.png", size=2048)]

    result = run("ls", "photos", "--prefix", "2024/")

    assert result.exit_code == 0
    assert "cat.png" in result.output
    client.list_objects.assert_called_once_with("photos", prefix="2024/")


def test_ls_json(client, run):
    client.list_buckets.return_value = [BucketInfo(name="photos")]

    result = run("ls", "--json")

    assert '"name": "photos"' in result.output


def test_mb_failure_exits_with_error(client, run):
    client.make_bucket.side_effect = ErrorResponse("BucketAlreadyExists", "taken")

    result = run("mb", "photos")

    assert result.exit_code == 1
    assert "Failed to create bucket" in result.output


def test_rb_asks_for_confirmation(client, run):
    result = run("rb", "photos", input="n\n")

    assert "Aborted." in result.output
    client.remove_bucket.assert_not_called()

    result = run("rb", "photos", "--force")

    assert result.exit_code == 0
    client.remove_bucket.assert_called_once_with("photos")


def test_put_uploads_file(client, run, tmp_path):
    source = tmp_path / "hello.txt"
    source.write_bytes(b"hello")
    client.put_object.return_value = ObjectInfo(key="hello.txt", size=5)

    result = run("put", str(source), "photos")

    assert result.exit_code == 0
    assert "Uploaded" in result.output
    client.put_object.assert_called_once_with("photos", "hello.txt", ANY, 5)


def test_get_downloads_to_output(client, run, tmp_path):
    target = tmp_path / "out.bin"
    client.fget_object.return_value = 12

    result = run("get", "photos", "cat.png", "-o", str(target))

    assert result.exit_code == 0
    client.fget_object.assert_called_once_with("photos", "cat.png", target)


def test_rm(client, run):
    result = run("rm", "photos", "cat.png")

    assert result.exit_code == 0
    client.remove_object.assert_called_once_with("photos", "cat.png")


def test_keepers(client, run):
    client.list_keepers.return_value = PeerList(peers=[PeerState("QmKeeper", connected=True)])

    result = run("keepers")

    assert "QmKeeper" in result.output


def test_create_user_prompts_for_password(client, run):
    client.create_user.return_value = UserPrivMessage(address="0xnew", sk="deadbeef")

    result = run("create-user", input="pw\npw\n")

    assert result.exit_code == 0
    assert "0xnew" in result.output
    client.create_user.assert_called_once_with(password="pw")
