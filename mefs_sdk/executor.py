"""
Request execution with retries.

The executor runs one logical gateway operation: it rewinds the request
body, sends the request, and on failure decides between retrying,
correcting the bucket region, or raising. Retries are sequential, spaced
by the RetryTimer and bounded by its attempt budget.
"""

import asyncio
import dataclasses
import io
from typing import AsyncIterator, Callable, Dict, Mapping, Optional, TextIO, Tuple
from urllib.parse import quote, urlencode, urlsplit

import aiohttp
import requests

from .auth import RequestSigner, default_signers, redact_signature, resolve_signer_type
from .bucket_cache import DEFAULT_REGION, REGION_MISMATCH_CODES, BucketLocationCache
from .classifier import (
    SUCCESS_STATUSES,
    is_code_retryable,
    is_connection_closed,
    is_request_error_retryable,
    is_status_retryable,
    to_error_response,
)
from .context import Context, background
from .credentials import Credentials, SignatureType
from .exceptions import (
    BodySeekError,
    ConfigurationError,
    ConnectionClosedError,
    ErrorResponse,
    InvalidResponseError,
    MefsError,
    NetworkError,
    RequestTimeoutError,
)
from .request import RequestMetadata
from .retry import RetryTimer
from .utils import is_seekable

STREAM_CHUNK_SIZE = 64 * 1024


@dataclasses.dataclass
class _CallState:
    region_corrected: bool = False


class BaseExecutor:
    """Request building, error decisions and tracing shared by both executors."""

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        bucket_cache: BucketLocationCache,
        region: str = "",
        timer: Optional[RetryTimer] = None,
        signers: Optional[Dict[SignatureType, RequestSigner]] = None,
        signer_type: SignatureType = SignatureType.DEFAULT,
        timeout: Optional[float] = None,
        user_agent: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.bucket_cache = bucket_cache
        self.region = region
        self.timer = timer or RetryTimer()
        self.signers = signers or default_signers()
        self.signer_type = signer_type
        self.timeout = timeout
        self.user_agent = user_agent

        self.trace_stream: Optional[TextIO] = None
        self.trace_errors_only = False

    def url_for(self, metadata: RequestMetadata) -> str:
        url = self.base_url + metadata.path
        if metadata.query_values:
            url += "?" + urlencode(metadata.query_values, quote_via=quote)
        return url

    def resolve_region(self, metadata: RequestMetadata) -> str:
        """Region for the next attempt: per-call, cached, client-wide, then default."""
        if metadata.bucket_location:
            return metadata.bucket_location
        if metadata.bucket_name:
            region, found = self.bucket_cache.get(metadata.bucket_name)
            if found and region:
                return region
        return self.region or DEFAULT_REGION

    def attempt_timeout(self, ctx: Context) -> Optional[float]:
        remaining = ctx.remaining()
        if remaining is None:
            return self.timeout
        if self.timeout is None:
            return remaining
        return min(self.timeout, remaining)

    def build_headers(self, method: str, url: str, metadata: RequestMetadata, region: str) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        headers.update(metadata.custom_header)
        if metadata.content_length >= 0:
            headers["Content-Length"] = str(metadata.content_length)
        if metadata.content_md5_base64:
            headers["Content-MD5"] = metadata.content_md5_base64

        creds = self.credentials.get()
        signer_type = resolve_signer_type(creds, self.signer_type)
        signer = self.signers.get(signer_type)
        if signer is None:
            raise ConfigurationError(f"No signer registered for {signer_type.value}", config_key="signers")
        headers.update(signer.sign(method, url, headers, creds, region, metadata.content_sha256_hex))
        return headers

    def should_retry(
        self,
        metadata: RequestMetadata,
        status: int,
        error: ErrorResponse,
        region_used: str,
        state: _CallState,
    ) -> bool:
        """
        Decide whether a decoded gateway error warrants another attempt.

        Region-mismatch errors are handled first, and only when the client
        is not pinned to a region. Updates the cache or the per-call region
        as a side effect.
        """
        if not self.region and error.code in REGION_MISMATCH_CODES:
            cached, found = "", False
            if metadata.bucket_name:
                cached, found = self.bucket_cache.get(metadata.bucket_name)
            if found:
                if error.region and error.region != cached:
                    self.bucket_cache.set(metadata.bucket_name, error.region)
                    if metadata.bucket_location:
                        metadata.bucket_location = error.region
                    return True
            # The hint is compared with the region this attempt was signed for,
            # which is us-east-1 when nothing else was resolved.
            elif not state.region_corrected and error.region and error.region != region_used:
                # At most one correction per call.
                metadata.bucket_location = error.region
                state.region_corrected = True
                return True

        if is_code_retryable(error.code):
            return True
        return is_status_retryable(status)

    def transport_error(self, exc: BaseException, url: str) -> MefsError:
        if not is_request_error_retryable(exc):
            return NetworkError(f"Request to {url} failed: {exc}", url=url)
        if isinstance(exc, (requests.exceptions.Timeout, asyncio.TimeoutError)):
            return RequestTimeoutError(f"Request to {url} timed out: {exc}", url=url)
        if is_connection_closed(exc):
            return ConnectionClosedError(url)
        return NetworkError(f"Request to {url} failed: {exc}", url=url)

    def trace(
        self,
        method: str,
        url: str,
        request_headers: Mapping[str, str],
        status: int,
        response_headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> None:
        """Dump one request/response exchange to the trace stream, if tracing is on."""
        if self.trace_stream is None:
            return
        if self.trace_errors_only and status in SUCCESS_STATUSES:
            return
        parts = urlsplit(url)
        target = parts.path + (f"?{parts.query}" if parts.query else "")
        out = self.trace_stream
        out.write("---------START-HTTP---------\n")
        out.write(f"{method} {target} HTTP/1.1\n")
        out.write(f"Host: {parts.netloc}\n")
        for key, value in request_headers.items():
            if key.lower() == "authorization":
                value = redact_signature(value)
            out.write(f"{key}: {value}\n")
        out.write(f"\nHTTP/1.1 {status}\n")
        for key, value in response_headers.items():
            out.write(f"{key}: {value}\n")
        if body:
            out.write("\n")
            out.write(body.decode("utf-8", errors="replace"))
            out.write("\n")
        out.write("---------END-HTTP---------\n")

    def _budget(self, body) -> Tuple[bool, int]:
        retryable = body is not None and is_seekable(body)
        if body is None or retryable:
            return retryable, self.timer.max_retry
        # A body that cannot be rewound can only be sent once.
        return False, 1


def _body_start(body) -> int:
    try:
        return body.tell()
    except (OSError, ValueError) as e:
        raise BodySeekError(f"Unable to read request body position: {e}") from e


def _rewind(body, start: int) -> None:
    try:
        body.seek(start)
    except (OSError, ValueError) as e:
        raise BodySeekError(f"Unable to seek request body to start: {e}") from e


async def _stream_body(body, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = body.read(chunk_size)
        if not chunk:
            return
        yield chunk


class RequestExecutor(BaseExecutor):
    """Executor on a ``requests.Session``; safe to share between threads."""

    def __init__(self, session: requests.Session, *args, sleep: Optional[Callable[[float], None]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.session = session
        self.sleep = sleep

    def execute(self, method: str, metadata: RequestMetadata, ctx: Optional[Context] = None) -> requests.Response:
        """
        Execute a request, retrying transient failures.

        Args:
            method: HTTP method
            metadata: Request description; not modified
            ctx: Cancellation context (defaults to one that never expires)

        Returns:
            The successful response. The caller owns it and must close it.

        Raises:
            ErrorResponse: The gateway rejected the request
            NetworkError: The transport failed
            BodySeekError: The body could not be rewound for a retry
            RequestCancelledError: The context was cancelled or expired
        """
        ctx = ctx or background()
        metadata = dataclasses.replace(metadata)
        body = metadata.content_body
        retryable, max_retry = self._budget(body)
        start = _body_start(body) if retryable else 0
        state = _CallState()
        last_error: Optional[MefsError] = None

        for _ in self.timer.with_max_retry(max_retry).attempts(ctx, self.sleep):
            if retryable:
                _rewind(body, start)

            region = self.resolve_region(metadata)
            url = self.url_for(metadata)
            headers = self.build_headers(method, url, metadata, region)
            prepared = self.session.prepare_request(
                requests.Request(method, url, headers=headers, data=body)
            )

            try:
                response = self.session.send(
                    prepared,
                    timeout=self.attempt_timeout(ctx),
                    allow_redirects=False,
                    stream=True,
                )
            except requests.exceptions.RequestException as exc:
                cancelled = ctx.err()
                if cancelled is not None:
                    raise cancelled from exc
                error = self.transport_error(exc, url)
                if is_request_error_retryable(exc):
                    last_error = error
                    continue
                raise error from exc

            if response is None:
                raise InvalidResponseError(f"Response is empty for {method} {url}")

            if response.status_code in SUCCESS_STATUSES:
                self.trace(method, url, prepared.headers, response.status_code, response.headers)
                return response

            try:
                content = response.content
            except requests.exceptions.RequestException as exc:
                error = self.transport_error(exc, url)
                if is_request_error_retryable(exc):
                    last_error = error
                    continue
                raise error from exc
            finally:
                response.close()
            # Keep the buffered body readable for the caller.
            response.raw = io.BytesIO(content)

            self.trace(method, url, prepared.headers, response.status_code, response.headers, content)
            error = to_error_response(
                response.status_code,
                response.headers,
                content,
                metadata.bucket_name,
                metadata.object_name,
                response=response,
            )
            last_error = error
            if self.should_retry(metadata, response.status_code, error, region, state):
                continue
            raise error

        raise last_error


class AsyncRequestExecutor(BaseExecutor):
    """Executor on an ``aiohttp.ClientSession``."""

    def __init__(self, session: aiohttp.ClientSession, *args, sleep=None, chunk_size: int = STREAM_CHUNK_SIZE, **kwargs):
        super().__init__(*args, **kwargs)
        self.session = session
        self.sleep = sleep
        self.chunk_size = chunk_size

    async def execute(self, method: str, metadata: RequestMetadata, ctx: Optional[Context] = None):
        """
        Async counterpart of RequestExecutor.execute.

        Returns the successful ``aiohttp.ClientResponse``; the caller reads
        and releases it. Cancelling the surrounding task aborts an in-flight
        send as well as a pending retry wait.
        """
        ctx = ctx or background()
        metadata = dataclasses.replace(metadata)
        body = metadata.content_body
        retryable, max_retry = self._budget(body)
        start = _body_start(body) if retryable else 0
        state = _CallState()
        last_error: Optional[MefsError] = None

        attempts = self.timer.with_max_retry(max_retry).async_attempts(ctx, self.sleep)
        try:
            async for _ in attempts:
                payload = body
                if retryable:
                    _rewind(body, start)
                    # aiohttp closes file payloads it is handed, so feed it chunks.
                    payload = _stream_body(body, self.chunk_size)

                region = self.resolve_region(metadata)
                url = self.url_for(metadata)
                headers = self.build_headers(method, url, metadata, region)

                try:
                    response = await self.session.request(
                        method,
                        url,
                        headers=headers,
                        data=payload,
                        allow_redirects=False,
                        timeout=aiohttp.ClientTimeout(total=self.attempt_timeout(ctx)),
                    )
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    cancelled = ctx.err()
                    if cancelled is not None:
                        raise cancelled from exc
                    error = self.transport_error(exc, url)
                    if is_request_error_retryable(exc):
                        last_error = error
                        continue
                    raise error from exc

                if response is None:
                    raise InvalidResponseError(f"Response is empty for {method} {url}")

                if response.status in SUCCESS_STATUSES:
                    self.trace(method, url, headers, response.status, response.headers)
                    return response

                try:
                    content = await response.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    error = self.transport_error(exc, url)
                    if is_request_error_retryable(exc):
                        last_error = error
                        continue
                    raise error from exc
                finally:
                    response.release()

                self.trace(method, url, headers, response.status, response.headers, content)
                error = to_error_response(
                    response.status,
                    response.headers,
                    content,
                    metadata.bucket_name,
                    metadata.object_name,
                    response=response,
                )
                last_error = error
                if self.should_retry(metadata, response.status, error, region, state):
                    continue
                raise error
        finally:
            await attempts.aclose()

        raise last_error
