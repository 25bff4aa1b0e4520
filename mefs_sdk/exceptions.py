"""
Custom exceptions for MEFS SDK.

This module defines all the exception classes used throughout the SDK.
Gateway-reported failures are raised as ErrorResponse; transport, body
and cancellation failures have their own types so callers can tell them
apart from anything the gateway said.
"""


class MefsError(Exception):
    """Base exception for all MEFS SDK errors."""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self):
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ErrorResponse(MefsError):
    """
    Error decoded from a gateway response.

    The buffered response is kept on ``response`` so its body can be read
    again by the caller.
    """

    def __init__(
        self,
        code: str,
        message: str = "",
        bucket_name: str = "",
        object_name: str = "",
        region: str = "",
        request_id: str = "",
        host_id: str = "",
        resource: str = "",
        status_code: int = 0,
        response=None,
    ):
        super().__init__(message or code, error_code=code)
        self.code = code
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.region = region
        self.request_id = request_id
        self.host_id = host_id
        self.resource = resource
        self.status_code = status_code
        self.response = response

    def __repr__(self):
        return (
            f"ErrorResponse(code={self.code!r}, message={self.message!r}, "
            f"bucket_name={self.bucket_name!r}, object_name={self.object_name!r}, "
            f"region={self.region!r}, status_code={self.status_code})"
        )


class AuthenticationError(MefsError):
    """Raised when credentials are missing or cannot be retrieved."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(message, error_code="AUTH_ERROR", **kwargs)


class ConfigurationError(MefsError):
    """Raised when SDK configuration is invalid."""

    def __init__(self, message: str = "Invalid configuration", config_key: str = None, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)
        self.config_key = config_key


class InvalidArgumentError(MefsError):
    """Raised when a caller passes an invalid bucket name, object name or option."""

    def __init__(self, message: str = "Invalid argument", field: str = None, **kwargs):
        super().__init__(message, error_code="InvalidArgument", **kwargs)
        self.field = field


class NotFoundError(MefsError):
    """Raised when a lookup succeeds at the HTTP level but yields nothing."""

    def __init__(self, message: str = "Not found", **kwargs):
        super().__init__(message, error_code="NOT_FOUND", **kwargs)


class NetworkError(MefsError):
    """Raised when the transport fails before a response is received."""

    def __init__(self, message: str = "Network operation failed", url: str = None, **kwargs):
        super().__init__(message, error_code="NETWORK_ERROR", **kwargs)
        self.url = url


class ConnectionClosedError(NetworkError):
    """Raised when the remote host closes the connection mid-request."""

    def __init__(self, url: str = None, **kwargs):
        target = url or "remote host"
        super().__init__(
            f"Connection closed by foreign host {target}. Retry again.", url=url, **kwargs
        )
        self.error_code = "CONNECTION_CLOSED"


class RequestTimeoutError(NetworkError):
    """Raised when a request times out."""

    def __init__(self, message: str = "Request timed out", timeout_seconds: float = None, **kwargs):
        super().__init__(message, **kwargs)
        self.error_code = "TIMEOUT_ERROR"
        self.timeout_seconds = timeout_seconds


class BodySeekError(MefsError):
    """Raised when a retryable request body cannot be rewound."""

    def __init__(self, message: str = "Unable to seek request body to start", **kwargs):
        super().__init__(message, error_code="SEEK_ERROR", **kwargs)


class InvalidResponseError(MefsError):
    """Raised when the transport hands back no response at all."""

    def __init__(self, message: str = "Response is empty", **kwargs):
        super().__init__(message, error_code="INVALID_RESPONSE", **kwargs)


class RequestCancelledError(MefsError):
    """Raised when the caller's context is cancelled."""

    def __init__(self, message: str = "Request cancelled", **kwargs):
        super().__init__(message, error_code="CANCELLED", **kwargs)


class DeadlineExceededError(RequestCancelledError):
    """Raised when the caller's context deadline passes."""

    def __init__(self, message: str = "Context deadline exceeded", **kwargs):
        super().__init__(message, **kwargs)
        self.error_code = "DEADLINE_EXCEEDED"
