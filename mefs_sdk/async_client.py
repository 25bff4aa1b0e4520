"""
Asynchronous MEFS client implementation.

This module provides an async/await compatible client for running many
gateway calls concurrently. It shares the classifier, retry timer and
bucket location cache logic with the synchronous client.
"""

import asyncio
import logging
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

import aiohttp

from .auth import RequestSigner
from .bucket_cache import BucketLocationCache, normalize_location
from .client import default_user_agent, resolve_settings
from .context import Context
from .credentials import Credentials, SignatureType
from .exceptions import ErrorResponse, MefsError, NotFoundError
from .executor import AsyncRequestExecutor
from .models import (
    BucketInfo,
    IdOutput,
    ObjectInfo,
    PeerList,
    buckets_from_response,
    objects_from_response,
)
from .request import AsyncRequestBuilder, RequestMetadata, decode_json
from .retry import MAX_RETRY, RetryTimer
from .utils import body_length, check_valid_bucket_name, check_valid_object_name, hash_materials

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = frozenset({"NoSuchBucket", "NotFound"})


class AsyncMefsClient:
    """
    Asynchronous client for a MEFS gateway.

    Provides the bucket and object operations of MefsClient with async/await
    support. Cancelling the calling task aborts the request in flight.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        session_token: Optional[str] = None,
        secure: bool = False,
        region: Optional[str] = None,
        credentials: Optional[Credentials] = None,
        timeout: Optional[float] = None,
        max_retries: int = MAX_RETRY,
        max_connections: int = 100,
        signer_type: SignatureType = SignatureType.DEFAULT,
        signers: Optional[Dict[SignatureType, RequestSigner]] = None,
        retry_timer: Optional[RetryTimer] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep=None,
    ):
        """
        Initialize the async MEFS client.

        Args:
            endpoint: Gateway address as host:port, URL or multiaddr
            access_key: Access key (the user's address)
            secret_key: Secret key
            session_token: Optional session token
            secure: Use HTTPS when the endpoint has no scheme
            region: Fixed region; "local" reads the endpoint from $MEFS_PATH/api
            credentials: Credentials object; overrides the key arguments
            timeout: Per-attempt timeout in seconds
            max_retries: Maximum number of attempts per call
            max_connections: Connection pool limit
            signer_type: Signature type overriding the credentials' own
            signers: Custom signer per signature type
            retry_timer: Backoff policy; overrides max_retries
            session: Pre-configured aiohttp session
            sleep: Coroutine used for the delay between attempts
        """
        base_url, region, credentials = resolve_settings(
            endpoint, access_key, secret_key, session_token, region, secure, credentials
        )
        self.base_url = base_url
        self.secure = base_url.startswith("https://")
        self.credentials = credentials
        self.bucket_cache = BucketLocationCache()
        self.max_connections = max_connections

        # Session will be created when needed
        self._session = session
        self._executor = AsyncRequestExecutor(
            session,
            base_url,
            credentials,
            self.bucket_cache,
            region=region,
            timer=retry_timer or RetryTimer(max_retry=max_retries),
            signers=signers,
            signer_type=signer_type,
            timeout=timeout,
            user_agent=default_user_agent(),
            sleep=sleep,
        )

    @property
    def region(self) -> str:
        return self._executor.region

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.max_connections)
            self._session = aiohttp.ClientSession(connector=connector)
        self._executor.session = self._session
        return self._session

    def trace_on(self, stream) -> None:
        self._executor.trace_stream = stream
        self._executor.trace_errors_only = False

    def trace_errors_only_on(self, stream) -> None:
        self._executor.trace_stream = stream
        self._executor.trace_errors_only = True

    def trace_off(self) -> None:
        self._executor.trace_stream = None
        self._executor.trace_errors_only = False

    def request(self, command: str, *args: str) -> AsyncRequestBuilder:
        return AsyncRequestBuilder(self, command, *args)

    async def execute(self, method: str, metadata: RequestMetadata, ctx: Optional[Context] = None):
        await self._get_session()
        logger.debug("%s %s bucket=%r object=%r", method, metadata.command, metadata.bucket_name, metadata.object_name)
        return await self._executor.execute(method, metadata, ctx=ctx)

    def _bucket_request(self, command: str, bucket_name: str, *args: str, object_name: str = "") -> AsyncRequestBuilder:
        return (
            self.request(command, bucket_name, *args)
            .bucket(bucket_name, object_name)
            .option("address", self.credentials.get().access_key_id)
        )

    async def id(self, peer: Optional[str] = None, ctx: Optional[Context] = None) -> IdOutput:
        args = [peer] if peer else []
        return IdOutput.from_dict(await self.request("id", *args).exec(ctx) or {})

    async def version(self, ctx: Optional[Context] = None) -> Tuple[str, str]:
        data = await self.request("version").exec(ctx) or {}
        return data.get("Version", ""), data.get("Commit", "")

    async def is_up(self) -> bool:
        try:
            await self.version()
        except MefsError as e:
            logger.debug("Gateway %s is down: %s", self.base_url, e)
            return False
        return True

    async def list_keepers(self, ctx: Optional[Context] = None) -> PeerList:
        builder = self.request("lfs/list_keepers").option("address", self.credentials.get().access_key_id)
        return PeerList.from_dict(await builder.exec(ctx))

    async def make_bucket(self, bucket_name: str, location: str = "", policy: Optional[int] = None,
                          data_count: Optional[int] = None, parity_count: Optional[int] = None,
                          ctx: Optional[Context] = None) -> BucketInfo:
        check_valid_bucket_name(bucket_name)
        location = location or self.region
        builder = (
            self._bucket_request("lfs/create_bucket", bucket_name)
            .option("policy", policy)
            .option("datacount", data_count)
            .option("paritycount", parity_count)
        )
        if location:
            builder.region(location)
        buckets = buckets_from_response(await builder.exec(ctx) or {})
        self.bucket_cache.set(bucket_name, normalize_location(location))
        if buckets:
            return BucketInfo.from_stat(buckets[0])
        return BucketInfo(name=bucket_name)

    async def remove_bucket(self, bucket_name: str, ctx: Optional[Context] = None) -> None:
        check_valid_bucket_name(bucket_name)
        await self._bucket_request("lfs/delete_bucket", bucket_name).exec(ctx)
        self.bucket_cache.delete(bucket_name)

    async def list_buckets(self, ctx: Optional[Context] = None) -> List[BucketInfo]:
        builder = self.request("lfs/list_buckets").option("address", self.credentials.get().access_key_id)
        data = await builder.exec(ctx)
        return [BucketInfo.from_stat(stat) for stat in buckets_from_response(data or {})]

    async def bucket_exists(self, bucket_name: str, ctx: Optional[Context] = None) -> bool:
        check_valid_bucket_name(bucket_name)
        try:
            await self._bucket_request("lfs/head_bucket", bucket_name).exec(ctx)
        except ErrorResponse as e:
            if e.code in _MISSING_BUCKET_CODES:
                return False
            raise
        return True

    async def list_objects(self, bucket_name: str, prefix: Optional[str] = None,
                           ctx: Optional[Context] = None) -> List[ObjectInfo]:
        check_valid_bucket_name(bucket_name)
        data = await self._bucket_request("lfs/list_objects", bucket_name).option("prefix", prefix).exec(ctx)
        return [ObjectInfo.from_stat(stat) for stat in objects_from_response(data or {})]

    async def stat_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> ObjectInfo:
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        builder = self._bucket_request("lfs/head_object", bucket_name, object_name, object_name=object_name)
        stats = objects_from_response(await builder.exec(ctx) or {})
        if not stats:
            raise NotFoundError(f"Object not found: {bucket_name}/{object_name}")
        return ObjectInfo.from_stat(stats[0])

    async def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Union[bytes, str, BinaryIO],
        length: int = -1,
        content_type: str = "application/octet-stream",
        ctx: Optional[Context] = None,
    ) -> ObjectInfo:
        """
        Upload an object.

        Args:
            bucket_name: Name of the bucket
            object_name: Name of the object
            data: Bytes, text or a readable binary stream
            length: Size of data, or -1 to take it from a seekable stream
            content_type: Content type stored with the object

        Returns:
            ObjectInfo of the stored object
        """
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        if isinstance(data, str):
            data = data.encode("utf-8")
        if isinstance(data, (bytes, bytearray)):
            length = len(data)
        elif length < 0:
            length = body_length(data)
        metadata = (
            self._bucket_request("lfs/put_object", bucket_name, object_name, object_name=object_name)
            .header("Content-Type", content_type)
            .body(data, length)
            .metadata()
        )
        if isinstance(data, (bytes, bytearray)):
            anonymous = self.credentials.get().signer_type.is_anonymous()
            metadata.content_md5_base64, metadata.content_sha256_hex = hash_materials(
                bytes(data), self.secure, anonymous
            )
        response = await self.execute("POST", metadata, ctx=ctx)
        try:
            result = decode_json(await response.read())
        finally:
            response.release()
        stats = objects_from_response(result if isinstance(result, dict) else {})
        if stats:
            return ObjectInfo.from_stat(stats[0])
        return ObjectInfo(key=object_name, size=max(length, 0))

    async def get_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> bytes:
        """Download an object into memory."""
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        builder = self._bucket_request("lfs/get_object", bucket_name, object_name, object_name=object_name)
        response = await builder.send(ctx)
        try:
            return await response.read()
        finally:
            response.release()

    async def remove_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> None:
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        await self._bucket_request("lfs/delete_object", bucket_name, object_name, object_name=object_name).exec(ctx)

    async def put_objects_concurrent(
        self,
        bucket_name: str,
        objects: Dict[str, bytes],
        max_concurrency: int = 5,
    ) -> List[ObjectInfo]:
        """
        Upload several in-memory objects concurrently.

        Args:
            bucket_name: Target bucket
            objects: Object name to content
            max_concurrency: Maximum uploads in flight

        Returns:
            ObjectInfo of every object, in the order given

        Raises:
            MefsError: The first upload failure; the other uploads are cancelled
        """
        semaphore = asyncio.Semaphore(max_concurrency)

        async def upload_single(name: str, content: bytes) -> ObjectInfo:
            async with semaphore:
                return await self.put_object(bucket_name, name, content)

        tasks = [asyncio.ensure_future(upload_single(name, content)) for name, content in objects.items()]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
