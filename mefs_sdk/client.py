"""
Synchronous MEFS client implementation.

This module provides the main client for talking to a MEFS gateway. Every
gateway command goes through the RequestExecutor, which owns retries,
region correction and error decoding; the methods here only shape
arguments and decode results.
"""

import logging
import os
import platform
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, TextIO, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3 import encode_multipart_formdata
from urllib3.util.retry import Retry

from .auth import RequestSigner
from .bucket_cache import BucketLocationCache, normalize_location, process_bucket_location_response
from .context import Context
from .credentials import Credentials, SignatureType
from .exceptions import ErrorResponse, InvalidArgumentError, MefsError, NetworkError, NotFoundError
from .executor import RequestExecutor
from .models import (
    BlockStat,
    BucketInfo,
    IdOutput,
    ObjectInfo,
    PeerInfo,
    PeerList,
    QueryEvent,
    SwarmConnInfo,
    UserPrivMessage,
    buckets_from_response,
    objects_from_response,
    string_list,
)
from .request import RequestBuilder, RequestMetadata, decode_json
from .retry import MAX_RETRY, RetryTimer
from .utils import (
    body_length,
    check_valid_bucket_name,
    check_valid_object_name,
    extract_obj_metadata,
    hash_materials,
    read_local_api_endpoint,
    resolve_endpoint,
)

logger = logging.getLogger(__name__)

SDK_VERSION = "1.0.0"
DEFAULT_ENDPOINT = "127.0.0.1:5001"
LOCAL_REGION = "local"

# Error codes meaning the bucket is simply not there.
_MISSING_BUCKET_CODES = frozenset({"NoSuchBucket", "NotFound"})


def default_user_agent() -> str:
    return f"MEFS ({platform.system()}; {platform.machine()}) mefs-sdk/{SDK_VERSION}"


def resolve_settings(
    endpoint: Optional[str],
    access_key: Optional[str],
    secret_key: Optional[str],
    session_token: Optional[str],
    region: Optional[str],
    secure: bool,
    credentials: Optional[Credentials],
) -> Tuple[str, str, Credentials]:
    """
    Apply environment fallbacks to client settings.

    Returns:
        ``(base_url, region, credentials)``; region is empty when the
        client should discover regions per bucket.
    """
    region = region if region is not None else os.getenv("MEFS_REGION", "")
    endpoint = endpoint or os.getenv("MEFS_ENDPOINT")
    if region == LOCAL_REGION:
        # The local node writes its API address under $MEFS_PATH.
        endpoint = endpoint or read_local_api_endpoint()
        region = ""
    base_url = resolve_endpoint(endpoint or DEFAULT_ENDPOINT, secure)

    if credentials is None:
        access_key = access_key or os.getenv("MEFS_ACCESS_KEY")
        secret_key = secret_key or os.getenv("MEFS_SECRET_KEY")
        if access_key or secret_key:
            token = session_token or os.getenv("MEFS_SESSION_TOKEN", "")
            credentials = Credentials.static_v4(access_key or "", secret_key or "", token)
        else:
            credentials = Credentials.default_chain()
    return base_url, region, credentials


def _bucket_region(response_headers) -> Optional[str]:
    for key, value in response_headers.items():
        if key.lower() == "x-amz-bucket-region":
            return value
    return None


class MefsClient:
    """
    Synchronous client for a MEFS gateway.

    A single instance can be shared between threads. The bucket location
    cache is owned by the instance and shared by all of its calls.
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
        keep_alive: bool = True,
        pool_maxsize: int = 10,
        signer_type: SignatureType = SignatureType.DEFAULT,
        signers: Optional[Dict[SignatureType, RequestSigner]] = None,
        retry_timer: Optional[RetryTimer] = None,
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        """
        Initialize the MEFS client.

        Args:
            endpoint: Gateway address as host:port, URL or multiaddr
                (can also use MEFS_ENDPOINT env var)
            access_key: Access key, i.e. the user's address (MEFS_ACCESS_KEY)
            secret_key: Secret key (MEFS_SECRET_KEY)
            session_token: Optional session token (MEFS_SESSION_TOKEN)
            secure: Use HTTPS when the endpoint has no scheme
            region: Fixed region; "local" reads the endpoint from $MEFS_PATH/api
                (MEFS_REGION)
            credentials: Credentials object; overrides the key arguments
            timeout: Per-attempt timeout in seconds
            max_retries: Maximum number of attempts per call
            keep_alive: Reuse connections between requests
            pool_maxsize: Connection pool size per host
            signer_type: Signature type overriding the credentials' own
            signers: Custom signer per signature type
            retry_timer: Backoff policy; overrides max_retries
            session: Pre-configured requests session
            sleep: Delay function used between attempts (testing hook)
        """
        base_url, region, credentials = resolve_settings(
            endpoint, access_key, secret_key, session_token, region, secure, credentials
        )
        self.base_url = base_url
        self.secure = base_url.startswith("https://")
        self.credentials = credentials
        self.bucket_cache = BucketLocationCache()

        self.session = session or requests.Session()
        if session is None:
            # Retries belong to the executor, so urllib3 must not retry on its own.
            adapter = HTTPAdapter(
                pool_connections=pool_maxsize,
                pool_maxsize=pool_maxsize,
                max_retries=Retry(total=0, redirect=False, raise_on_status=False),
            )
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)
        if not keep_alive:
            self.session.headers["Connection"] = "close"

        self._executor = RequestExecutor(
            self.session,
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
        logger.debug("MEFS client for %s (region=%r)", base_url, region or "auto")

    @property
    def region(self) -> str:
        return self._executor.region

    def set_app_info(self, app_name: str, app_version: str) -> None:
        """Append an application name and version to the User-Agent."""
        if app_name and app_version:
            self._executor.user_agent = f"{default_user_agent()} {app_name}/{app_version}"

    def set_timeout(self, timeout: Optional[float]) -> None:
        self._executor.timeout = timeout

    def set_custom_transport(self, adapter: HTTPAdapter) -> None:
        """Route all requests through a custom requests transport adapter."""
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def trace_on(self, stream: TextIO) -> None:
        """Dump every request and response to ``stream``."""
        self._executor.trace_stream = stream
        self._executor.trace_errors_only = False

    def trace_errors_only_on(self, stream: TextIO) -> None:
        """Dump only failed exchanges to ``stream``."""
        self._executor.trace_stream = stream
        self._executor.trace_errors_only = True

    def trace_errors_only_off(self) -> None:
        self._executor.trace_errors_only = False

    def trace_off(self) -> None:
        self._executor.trace_stream = None
        self._executor.trace_errors_only = False

    def request(self, command: str, *args: str) -> RequestBuilder:
        """Start building a raw gateway command."""
        return RequestBuilder(self, command, *args)

    def execute(self, method: str, metadata: RequestMetadata, ctx: Optional[Context] = None) -> requests.Response:
        logger.debug("%s %s bucket=%r object=%r", method, metadata.command, metadata.bucket_name, metadata.object_name)
        return self._executor.execute(method, metadata, ctx=ctx)

    def _address(self) -> str:
        return self.credentials.get().access_key_id

    def _bucket_request(self, command: str, bucket_name: str, *args: str, object_name: str = "") -> RequestBuilder:
        return (
            self.request(command, bucket_name, *args)
            .bucket(bucket_name, object_name)
            .option("address", self._address())
        )

    # Node

    def id(self, peer: Optional[str] = None, ctx: Optional[Context] = None) -> IdOutput:
        """
        Get the identity of a node.

        Args:
            peer: Peer ID to look up; the gateway's own node when omitted

        Returns:
            IdOutput of the node
        """
        args = [peer] if peer else []
        return IdOutput.from_dict(self.request("id", *args).exec(ctx) or {})

    def find_peer(self, peer: str, ctx: Optional[Context] = None) -> PeerInfo:
        data = self.request("dht/findpeer", peer).exec(ctx) or {}
        responses = data.get("Responses") or []
        if not responses:
            raise NotFoundError(f"Peer not found: {peer}")
        return PeerInfo.from_dict(responses[0])

    def resolve_path(self, path: str, ctx: Optional[Context] = None) -> str:
        data = self.request("resolve", path).exec(ctx) or {}
        resolved = data.get("Path", "")
        if resolved.startswith("/ipfs/"):
            resolved = resolved[len("/ipfs/"):]
        return resolved

    def version(self, ctx: Optional[Context] = None) -> Tuple[str, str]:
        """Return the gateway's ``(version, commit)``."""
        data = self.request("version").exec(ctx) or {}
        return data.get("Version", ""), data.get("Commit", "")

    def is_up(self) -> bool:
        """Check whether the gateway answers."""
        try:
            self.version()
        except MefsError as e:
            logger.debug("Gateway %s is down: %s", self.base_url, e)
            return False
        return True

    # Blocks

    def block_stat(self, path: str, ctx: Optional[Context] = None) -> BlockStat:
        return BlockStat.from_dict(self.request("block/stat", path).exec(ctx) or {})

    def block_get(self, path: str, ctx: Optional[Context] = None) -> bytes:
        response = self.request("block/get", path).send(ctx)
        try:
            return response.content
        finally:
            response.close()

    def block_put(
        self,
        block: bytes,
        format: str = "v0",
        mhtype: str = "sha2-256",
        mhlen: int = -1,
        ctx: Optional[Context] = None,
    ) -> str:
        """
        Store a raw block.

        Returns:
            Key of the stored block
        """
        body, content_type = encode_multipart_formdata({"file": ("", block, "application/octet-stream")})
        data = (
            self.request("block/put")
            .option("mhtype", mhtype)
            .option("format", format)
            .option("mhlen", mhlen)
            .header("Content-Type", content_type)
            .body(body, len(body))
            .exec(ctx)
        ) or {}
        return data.get("Key", "")

    def block_get_from(self, key: str, peer_id: str, ctx: Optional[Context] = None) -> Any:
        return self.request("block/getfrom", key, peer_id).exec(ctx)

    # Swarm and DHT

    def swarm_peers(self, ctx: Optional[Context] = None) -> List[SwarmConnInfo]:
        data = self.request("swarm/peers").exec(ctx) or {}
        return [SwarmConnInfo.from_dict(p) for p in (data.get("Peers") or [])]

    def swarm_connect(self, *addrs: str, ctx: Optional[Context] = None) -> List[str]:
        if not addrs:
            raise InvalidArgumentError("At least one address is required", field="addrs")
        data = self.request("swarm/connect").arguments(*addrs).exec(ctx) or {}
        return list(data.get("Strings") or [])

    def challenge_test(self, key: str, to: str, ctx: Optional[Context] = None) -> Any:
        return self.request("dht/challengeTest", key, to).exec(ctx)

    def get_from(self, key: str, peer_id: str, ctx: Optional[Context] = None) -> Optional[QueryEvent]:
        data = self.request("dht/getfrom", key, peer_id).exec(ctx)
        return QueryEvent.from_dict(data) if data else None

    # Users

    def create_user(self, password: Optional[str] = None, secret_key: Optional[str] = None,
                    ctx: Optional[Context] = None) -> UserPrivMessage:
        """
        Create a new user on the gateway's node.

        Args:
            password: Password protecting the new user's key
            secret_key: Import this private key instead of generating one

        Returns:
            UserPrivMessage with the address and private key
        """
        data = (
            self.request("create")
            .option("password", password)
            .option("secretekey", secret_key)
            .exec(ctx)
        )
        return UserPrivMessage.from_dict(data or {})

    def start_user(self, address: Optional[str] = None, password: Optional[str] = None,
                   ctx: Optional[Context] = None) -> List[str]:
        """Start the storage service of a user (the client's own by default)."""
        data = (
            self.request("lfs/start", address or self._address())
            .option("password", password)
            .exec(ctx)
        )
        return string_list(data)

    def fsync(self, force: Optional[bool] = None, ctx: Optional[Context] = None) -> List[str]:
        """Flush the user's metadata to the network."""
        data = (
            self.request("lfs/fsync")
            .option("address", self._address())
            .option("force", force)
            .exec(ctx)
        )
        return string_list(data)

    def show_storage(self, ctx: Optional[Context] = None) -> Any:
        return self.request("lfs/show_storage").option("address", self._address()).exec(ctx)

    def list_keepers(self, ctx: Optional[Context] = None) -> PeerList:
        data = self.request("lfs/list_keepers").option("address", self._address()).exec(ctx)
        return PeerList.from_dict(data)

    # Buckets

    def make_bucket(
        self,
        bucket_name: str,
        location: str = "",
        policy: Optional[int] = None,
        data_count: Optional[int] = None,
        parity_count: Optional[int] = None,
        ctx: Optional[Context] = None,
    ) -> BucketInfo:
        """
        Create a bucket.

        Args:
            bucket_name: Name of the bucket
            location: Region to create the bucket in (client region by default)
            policy: Redundancy policy
            data_count: Number of data shards
            parity_count: Number of parity shards

        Returns:
            BucketInfo of the new bucket
        """
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
        buckets = buckets_from_response(builder.exec(ctx) or {})
        self.bucket_cache.set(bucket_name, normalize_location(location))
        if buckets:
            return BucketInfo.from_stat(buckets[0])
        return BucketInfo(name=bucket_name)

    def remove_bucket(self, bucket_name: str, ctx: Optional[Context] = None) -> None:
        check_valid_bucket_name(bucket_name)
        self._bucket_request("lfs/delete_bucket", bucket_name).exec(ctx)
        self.bucket_cache.delete(bucket_name)

    def list_buckets(self, ctx: Optional[Context] = None) -> List[BucketInfo]:
        data = self.request("lfs/list_buckets").option("address", self._address()).exec(ctx)
        return [BucketInfo.from_stat(stat) for stat in buckets_from_response(data or {})]

    def bucket_exists(self, bucket_name: str, ctx: Optional[Context] = None) -> bool:
        """Return True if the bucket exists and the caller may access it."""
        check_valid_bucket_name(bucket_name)
        try:
            self._bucket_request("lfs/head_bucket", bucket_name).exec(ctx)
        except ErrorResponse as e:
            if e.code in _MISSING_BUCKET_CODES:
                return False
            raise
        return True

    def get_bucket_location(self, bucket_name: str, ctx: Optional[Context] = None) -> str:
        """
        Return the region of a bucket, asking the gateway on a cache miss.

        Region-mismatch errors from the lookup carry the bucket's region and
        are turned into it rather than raised.
        """
        check_valid_bucket_name(bucket_name)
        if self.region:
            return self.region
        region, found = self.bucket_cache.get(bucket_name)
        if found:
            return region

        try:
            response = self._bucket_request("lfs/head_bucket", bucket_name).send(ctx)
        except ErrorResponse as e:
            region = process_bucket_location_response(error=e)
        else:
            try:
                region = process_bucket_location_response(location=_bucket_region(response.headers))
            finally:
                response.close()
        self.bucket_cache.set(bucket_name, region)
        return region

    # Objects

    def list_objects(
        self,
        bucket_name: str,
        prefix: Optional[str] = None,
        with_avail_time: Optional[bool] = None,
        ctx: Optional[Context] = None,
    ) -> List[ObjectInfo]:
        check_valid_bucket_name(bucket_name)
        data = (
            self._bucket_request("lfs/list_objects", bucket_name)
            .option("prefix", prefix)
            .option("Avail", with_avail_time)
            .exec(ctx)
        )
        return [ObjectInfo.from_stat(stat) for stat in objects_from_response(data or {})]

    def stat_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> ObjectInfo:
        """
        Get the metadata of an object.

        Raises:
            NotFoundError: If the gateway answers without the object
        """
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        response = self._bucket_request("lfs/head_object", bucket_name, object_name, object_name=object_name).send(ctx)
        try:
            stats = objects_from_response(_json_or_empty(response))
            metadata = extract_obj_metadata(response.headers)
        finally:
            response.close()
        if not stats:
            raise NotFoundError(f"Object not found: {bucket_name}/{object_name}")
        info = ObjectInfo.from_stat(stats[0])
        info.metadata = metadata
        return info

    def put_object(
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

        In-memory data and seekable files are retried on transient
        failures; other streams are sent exactly once.

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
        builder = (
            self._bucket_request("lfs/put_object", bucket_name, object_name, object_name=object_name)
            .header("Content-Type", content_type)
        )
        if isinstance(data, str):
            data = data.encode("utf-8")
        if isinstance(data, (bytes, bytearray)):
            length = len(data)
        elif length < 0:
            length = body_length(data)
        builder.body(data, length)

        metadata = builder.metadata()
        if isinstance(data, (bytes, bytearray)):
            anonymous = self.credentials.get().signer_type.is_anonymous()
            metadata.content_md5_base64, metadata.content_sha256_hex = hash_materials(
                bytes(data), self.secure, anonymous
            )
        response = self.execute("POST", metadata, ctx=ctx)
        try:
            result = objects_from_response(_json_or_empty(response))
        finally:
            response.close()
        if result:
            return ObjectInfo.from_stat(result[0])
        return ObjectInfo(key=object_name, size=max(length, 0))

    def get_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> requests.Response:
        """
        Download an object.

        Returns:
            The streaming response; the caller must close it.
        """
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        return self._bucket_request("lfs/get_object", bucket_name, object_name, object_name=object_name).send(ctx)

    def fget_object(self, bucket_name: str, object_name: str, file_path: Union[str, Path],
                    chunk_size: int = 1024 * 1024, ctx: Optional[Context] = None) -> int:
        """
        Download an object into a local file.

        The data lands in ``<file_path>.part.mefs`` first and is renamed on
        completion.

        Returns:
            Number of bytes written
        """
        file_path = Path(file_path)
        if file_path.is_dir():
            raise InvalidArgumentError(f"{file_path} is a directory", field="file_path")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        part_path = file_path.with_name(file_path.name + ".part.mefs")

        written = 0
        response = self.get_object(bucket_name, object_name, ctx=ctx)
        try:
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Download of {bucket_name}/{object_name} failed: {e}", url=response.url)
        finally:
            response.close()
        os.replace(part_path, file_path)
        return written

    def remove_object(self, bucket_name: str, object_name: str, ctx: Optional[Context] = None) -> None:
        check_valid_bucket_name(bucket_name)
        check_valid_object_name(object_name)
        self._bucket_request("lfs/delete_object", bucket_name, object_name, object_name=object_name).exec(ctx)

    def close(self):
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def _json_or_empty(response: requests.Response) -> Dict[str, Any]:
    data = decode_json(response.content)
    return data if isinstance(data, dict) else {}
