import io
import json

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from mefs_sdk.bucket_cache import BucketLocationCache
from mefs_sdk.credentials import Credentials
from mefs_sdk.executor import RequestExecutor
from mefs_sdk.retry import NO_JITTER, RetryTimer

BASE_URL = "http://gateway:5001"
ADDRESS = "0x39051EECB105f203fA5613deb5ee33b35a07834a"


def make_response(status, body=b"", headers=None, url=""):
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = io.BytesIO(body)
    response.url = url
    return response


def json_body(data):
    return json.dumps(data).encode("utf-8")


def error_xml(code, message="", region="", bucket=""):
    parts = [f"<Code>{code}</Code>", f"<Message>{message}</Message>"]
    if region:
        parts.append(f"<Region>{region}</Region>")
    if bucket:
        parts.append(f"<BucketName>{bucket}</BucketName>")
    return ("<Error>" + "".join(parts) + "</Error>").encode("utf-8")


class FakeSession(requests.Session):
    """
    requests.Session that answers from a script instead of the network.

    Each script entry is an exception to raise, a ``(status, body,
    headers)`` tuple, or a callable taking the request and returning
    either. Every sent request is recorded with the body bytes it carried.
    """

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.sent = []
        self.bodies = []
        self.send_kwargs = []

    def send(self, request, **kwargs):
        self.sent.append(request)
        self.send_kwargs.append(kwargs)
        body = request.body
        if hasattr(body, "read"):
            body = body.read()
        self.bodies.append(body)

        outcome = self.script.pop(0)
        if callable(outcome):
            outcome = outcome(request)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return None
        status = outcome[0]
        content = outcome[1] if len(outcome) > 1 else b""
        headers = outcome[2] if len(outcome) > 2 else None
        return make_response(status, content, headers, url=request.url)


class FakeAsyncResponse:
    def __init__(self, status, body=b"", headers=None):
        self.status = status
        self.headers = headers or {}
        self._body = body
        self.released = False

    async def read(self):
        return self._body

    def release(self):
        self.released = True


class FakeAsyncSession:
    """
    Scripted stand-in for aiohttp.ClientSession.request.

    Streamed bodies are drained as they would be on the wire; the chunks are
    kept on ``chunks`` and the joined bytes on ``bodies``.
    """

    def __init__(self, script):
        self.script = list(script)
        self.calls = []
        self.bodies = []
        self.chunks = []
        self.responses = []
        self.closed = False

    async def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        data = kwargs.get("data")
        if hasattr(data, "__aiter__"):
            chunks = [chunk async for chunk in data]
            self.chunks.append(chunks)
            data = b"".join(chunks)
        self.bodies.append(data)
        outcome = self.script.pop(0)
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        response = FakeAsyncResponse(*outcome)
        self.responses.append(response)
        return response

    async def close(self):
        self.closed = True


@pytest.fixture
def delays():
    return []


@pytest.fixture
def bucket_cache():
    return BucketLocationCache()


@pytest.fixture
def make_executor(delays, bucket_cache):
    def factory(script, region="", max_retry=5, credentials=None, sleep=None):
        session = FakeSession(script)
        executor = RequestExecutor(
            session,
            BASE_URL,
            credentials or Credentials.static_v4(ADDRESS, "secret"),
            bucket_cache,
            region=region,
            timer=RetryTimer(max_retry=max_retry, jitter=NO_JITTER),
            sleep=sleep or delays.append,
        )
        return executor, session

    return factory


@pytest.fixture
def make_client(delays):
    from mefs_sdk.client import MefsClient

    def factory(script, region="", **kwargs):
        session = FakeSession(script)
        client = MefsClient(
            endpoint=BASE_URL,
            access_key=ADDRESS,
            secret_key="secret",
            region=region,
            session=session,
            retry_timer=RetryTimer(jitter=NO_JITTER),
            sleep=delays.append,
            **kwargs,
        )
        return client, session

    return factory
