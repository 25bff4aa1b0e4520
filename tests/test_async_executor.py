import asyncio
import io
import time

import aiohttp
import pytest

from mefs_sdk.bucket_cache import BucketLocationCache
from mefs_sdk.context import Context
from mefs_sdk.credentials import Credentials
from mefs_sdk.exceptions import ConnectionClosedError, ErrorResponse, RequestCancelledError
from mefs_sdk.executor import AsyncRequestExecutor
from mefs_sdk.request import RequestMetadata
from mefs_sdk.retry import NO_JITTER, RetryTimer

from conftest import ADDRESS, BASE_URL, FakeAsyncSession, error_xml


@pytest.fixture
def async_executor():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    def factory(script, region="", sleep_fn=None):
        session = FakeAsyncSession(script)
        executor = AsyncRequestExecutor(
            session,
            BASE_URL,
            Credentials.static_v4(ADDRESS, "secret"),
            BucketLocationCache(),
            region=region,
            timer=RetryTimer(jitter=NO_JITTER),
            sleep=sleep_fn or sleep,
        )
        return executor, session, delays

    return factory


@pytest.mark.asyncio
async def test_async_retries_then_succeeds(async_executor):
    executor, session, delays = async_executor([(503,), (500, error_xml("InternalError")), (200, b"ok")])

    response = await executor.execute("POST", RequestMetadata(command="version"))

    assert response.status == 200
    assert len(session.calls) == 3
    assert delays == [pytest.approx(0.2), pytest.approx(0.4)]
    # Failed attempts are drained and released; the success belongs to the caller.
    assert [r.released for r in session.responses] == [True, True, False]


@pytest.mark.asyncio
async def test_async_error_is_decoded(async_executor):
    executor, session, _ = async_executor([(404, error_xml("NoSuchBucket", "missing"))])

    with pytest.raises(ErrorResponse) as excinfo:
        await executor.execute("POST", RequestMetadata(command="lfs/head_bucket", bucket_name="photos"))

    assert excinfo.value.code == "NoSuchBucket"
    assert excinfo.value.status_code == 404
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_async_region_correction(async_executor):
    executor, session, _ = async_executor([
        (403, error_xml("AccessDenied", "", region="eu-west-1")),
        (200, b"{}"),
    ])

    await executor.execute("POST", RequestMetadata(command="lfs/list_buckets"))

    authorizations = [kwargs["headers"]["Authorization"] for _, _, kwargs in session.calls]
    assert "/us-east-1," in authorizations[0]
    assert "/eu-west-1," in authorizations[1]


@pytest.mark.asyncio
async def test_async_body_is_resent_on_retry(async_executor):
    executor, session, _ = async_executor([(503,), (200,)])

    await executor.execute(
        "POST", RequestMetadata(command="block/put", content_body=io.BytesIO(b"data"), content_length=4)
    )

    assert session.bodies == [b"data", b"data"]


@pytest.mark.asyncio
async def test_async_transport_error_is_retried(async_executor):
    executor, session, _ = async_executor([
        aiohttp.ServerDisconnectedError(),
        aiohttp.ServerDisconnectedError(),
        aiohttp.ServerDisconnectedError(),
        aiohttp.ServerDisconnectedError(),
        aiohttp.ServerDisconnectedError(),
    ])

    with pytest.raises(ConnectionClosedError):
        await executor.execute("POST", RequestMetadata(command="version"))

    assert len(session.calls) == 5


@pytest.mark.asyncio
async def test_async_cancellation_between_attempts(async_executor):
    ctx = Context()

    async def cancel_on_wait(seconds):
        ctx.cancel()

    executor, session, _ = async_executor([(503,), (200,)], sleep_fn=cancel_on_wait)

    with pytest.raises(RequestCancelledError):
        await executor.execute("POST", RequestMetadata(command="version"), ctx=ctx)

    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_async_task_cancellation_aborts_in_flight_send(async_executor):
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.sleep(3600)

    executor, session, _ = async_executor([hang])
    task = asyncio.ensure_future(executor.execute("POST", RequestMetadata(command="version")))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_async_cancel_cuts_backoff_wait_short():
    session = FakeAsyncSession([(503,), (200,)])
    executor = AsyncRequestExecutor(
        session,
        BASE_URL,
        Credentials.static_v4(ADDRESS, "secret"),
        BucketLocationCache(),
        timer=RetryTimer(unit=3.0, cap=3.0, jitter=NO_JITTER),
    )
    ctx = Context()
    asyncio.get_running_loop().call_later(0.1, ctx.cancel)

    started = time.monotonic()
    with pytest.raises(RequestCancelledError):
        await executor.execute("POST", RequestMetadata(command="version"), ctx=ctx)

    assert time.monotonic() - started < 1.0
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_async_file_body_is_streamed_in_chunks(async_executor, tmp_path):
    path = tmp_path / "object.bin"
    path.write_bytes(b"0123456789")
    executor, session, _ = async_executor([(503,), (200,)])
    executor.chunk_size = 4

    with open(path, "rb") as f:
        await executor.execute(
            "POST", RequestMetadata(command="lfs/put_object", content_body=f, content_length=10)
        )
        assert not f.closed

    assert session.chunks == [[b"0123", b"4567", b"89"], [b"0123", b"4567", b"89"]]


@pytest.mark.asyncio
async def test_async_body_is_replayed_from_its_starting_offset(async_executor):
    body = io.BytesIO(b"HEADERpayload")
    body.seek(6)
    executor, session, _ = async_executor([(503,), (200,)])

    await executor.execute("POST", RequestMetadata(command="lfs/put_object", content_body=body, content_length=7))

    assert session.bodies == [b"payload", b"payload"]
