"""
MEFS SDK - Python client for MEFS storage gateways.

This package provides:
- Synchronous and asyncio clients for the gateway's bucket, object, block
  and node commands
- Automatic retries with jittered backoff and bucket region correction
- Pluggable credential providers and request signers
- A command-line tool (``mefs``)
"""

__version__ = "1.0.0"

from .client import MefsClient
from .async_client import AsyncMefsClient
from .context import Context
from .credentials import (
    Credentials,
    SignatureType,
    StaticProvider,
    EnvProvider,
    FileProvider,
    ChainProvider,
    RefreshingProvider,
)
from .models import (
    BucketInfo,
    ObjectInfo,
    UserPrivMessage,
    PeerInfo,
    PeerList,
    IdOutput,
    QueryEvent,
    BlockStat,
    SwarmConnInfo,
)
from .retry import RetryTimer
from .exceptions import (
    MefsError,
    ErrorResponse,
    AuthenticationError,
    ConfigurationError,
    InvalidArgumentError,
    NotFoundError,
    NetworkError,
    ConnectionClosedError,
    RequestTimeoutError,
    BodySeekError,
    InvalidResponseError,
    RequestCancelledError,
    DeadlineExceededError,
)

__all__ = [
    # Main clients
    "MefsClient",
    "AsyncMefsClient",
    "Context",
    "RetryTimer",

    # Credentials
    "Credentials",
    "SignatureType",
    "StaticProvider",
    "EnvProvider",
    "FileProvider",
    "ChainProvider",
    "RefreshingProvider",

    # Data models
    "BucketInfo",
    "ObjectInfo",
    "UserPrivMessage",
    "PeerInfo",
    "PeerList",
    "IdOutput",
    "QueryEvent",
    "BlockStat",
    "SwarmConnInfo",

    # Exceptions
    "MefsError",
    "ErrorResponse",
    "AuthenticationError",
    "ConfigurationError",
    "InvalidArgumentError",
    "NotFoundError",
    "NetworkError",
    "ConnectionClosedError",
    "RequestTimeoutError",
    "BodySeekError",
    "InvalidResponseError",
    "RequestCancelledError",
    "DeadlineExceededError",
]
