"""
Request metadata and the gateway command builder.

The gateway exposes an RPC-style HTTP API: every operation is a POST to
``/api/v0/<command>`` with positional arguments passed as repeated ``arg``
query parameters and options as named query parameters. RequestBuilder
collects a command and turns it into RequestMetadata for the executor.
"""

import json
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

from .context import Context
from .exceptions import InvalidResponseError
from .utils import as_body

API_PREFIX = "/api/v0"


@dataclass
class RequestMetadata:
    """Everything the executor needs to issue one logical operation."""

    command: str = ""
    bucket_name: str = ""
    object_name: str = ""
    query_values: List[Tuple[str, str]] = field(default_factory=list)
    custom_header: Dict[str, str] = field(default_factory=dict)

    content_body: Optional[BinaryIO] = None
    content_length: int = -1
    content_md5_base64: str = ""
    content_sha256_hex: str = ""

    # Region for this call only; empty means resolve from cache or client.
    bucket_location: str = ""

    @property
    def path(self) -> str:
        return f"{API_PREFIX}/{self.command.strip('/')}"


def encode_option(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RequestBuilder:
    """
    Fluent builder for one gateway command.

    Example:
        >>> client.request("lfs/list_keepers").option("address", addr).exec()
    """

    def __init__(self, client, command: str, *args: str):
        self._client = client
        self._command = command
        self._args: List[str] = list(args)
        self._options: List[Tuple[str, str]] = []
        self._headers: Dict[str, str] = {}
        self._body = None
        self._content_length = -1
        self._bucket_name = ""
        self._object_name = ""
        self._bucket_location = ""

    def arguments(self, *args: str) -> "RequestBuilder":
        self._args.extend(args)
        return self

    def option(self, key: str, value: Any) -> "RequestBuilder":
        if value is not None:
            self._options.append((key, encode_option(value)))
        return self

    def header(self, name: str, value: str) -> "RequestBuilder":
        self._headers[name] = value
        return self

    def body(self, data, content_length: int = -1) -> "RequestBuilder":
        self._body = as_body(data)
        self._content_length = content_length
        return self

    def bucket(self, bucket_name: str, object_name: str = "") -> "RequestBuilder":
        """Record the bucket/object the command targets, for region and error handling."""
        self._bucket_name = bucket_name
        self._object_name = object_name
        return self

    def region(self, region: str) -> "RequestBuilder":
        self._bucket_location = region
        return self

    def metadata(self) -> RequestMetadata:
        query = [("arg", arg) for arg in self._args] + list(self._options)
        return RequestMetadata(
            command=self._command,
            bucket_name=self._bucket_name,
            object_name=self._object_name,
            query_values=query,
            custom_header=dict(self._headers),
            content_body=self._body,
            content_length=self._content_length,
            bucket_location=self._bucket_location,
        )

    def send(self, ctx: Optional[Context] = None):
        """Execute the command and return the raw response (caller closes it)."""
        return self._client.execute("POST", self.metadata(), ctx=ctx)

    def exec(self, ctx: Optional[Context] = None) -> Any:
        """Execute the command and decode its JSON result (None for an empty body)."""
        response = self.send(ctx)
        try:
            return decode_json(response.content)
        finally:
            response.close()


class AsyncRequestBuilder(RequestBuilder):
    """RequestBuilder bound to an AsyncMefsClient."""

    async def send(self, ctx: Optional[Context] = None):
        return await self._client.execute("POST", self.metadata(), ctx=ctx)

    async def exec(self, ctx: Optional[Context] = None) -> Any:
        response = await self.send(ctx)
        try:
            return decode_json(await response.read())
        finally:
            response.release()


def decode_json(content: Optional[bytes]) -> Any:
    """Decode a gateway JSON body; streaming endpoints may return several documents."""
    if not content or not content.strip():
        return None
    text = content.decode("utf-8")
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Newline-delimited output: keep the last complete document.
    documents = [line for line in text.splitlines() if line.strip()]
    try:
        return json.loads(documents[-1])
    except (ValueError, IndexError) as e:
        raise InvalidResponseError(f"Cannot decode gateway response: {e}")
