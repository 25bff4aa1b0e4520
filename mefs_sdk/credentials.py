"""
Credential providers for MEFS SDK.

Providers supply the access key, secret, optional session token and the
signature type to apply. They can be static, read from the environment or
a credentials file, chained, and wrapped in a refreshing cache.
"""

import json
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .exceptions import AuthenticationError, ConfigurationError


class SignatureType(Enum):
    """Authentication scheme applied to a request."""
    DEFAULT = "default"
    V2 = "v2"
    V4 = "v4"
    ANONYMOUS = "anonymous"

    def is_v2(self) -> bool:
        return self is SignatureType.V2

    def is_v4(self) -> bool:
        return self in (SignatureType.V4, SignatureType.DEFAULT)

    def is_anonymous(self) -> bool:
        return self is SignatureType.ANONYMOUS


@dataclass
class Value:
    """Credentials handed to a signer."""

    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""
    signer_type: SignatureType = SignatureType.V4


class Provider:
    """Base class for credential providers."""

    def retrieve(self) -> Value:
        raise NotImplementedError

    def is_expired(self) -> bool:
        return False


class StaticProvider(Provider):
    """Fixed credentials. Empty keys mean anonymous access."""

    def __init__(
        self,
        access_key_id: str,
        secret_access_key: str,
        session_token: str = "",
        signer_type: SignatureType = SignatureType.V4,
    ):
        if not access_key_id and not secret_access_key:
            signer_type = SignatureType.ANONYMOUS
        self._value = Value(access_key_id, secret_access_key, session_token, signer_type)

    def retrieve(self) -> Value:
        return self._value


class EnvProvider(Provider):
    """Credentials from ``MEFS_ACCESS_KEY`` / ``MEFS_SECRET_KEY`` / ``MEFS_SESSION_TOKEN``."""

    def retrieve(self) -> Value:
        access_key = os.getenv("MEFS_ACCESS_KEY", "")
        secret_key = os.getenv("MEFS_SECRET_KEY", "")
        signer_type = SignatureType.V4 if access_key else SignatureType.ANONYMOUS
        return Value(access_key, secret_key, os.getenv("MEFS_SESSION_TOKEN", ""), signer_type)


def default_credentials_file() -> Path:
    base = os.getenv("MEFS_PATH")
    if base:
        return Path(base).expanduser() / "credentials.json"
    return Path.home() / ".mefs" / "credentials.json"


class FileProvider(Provider):
    """
    Credentials from a JSON file keyed by profile.

    File format::

        {"default": {"access_key": "0x...", "secret_key": "...", "session_token": ""}}
    """

    def __init__(self, path: Optional[Path] = None, profile: str = "default"):
        self.path = Path(path) if path else default_credentials_file()
        self.profile = profile

    def retrieve(self) -> Value:
        if not self.path.exists():
            return Value(signer_type=SignatureType.ANONYMOUS)
        try:
            with open(self.path, "r") as f:
                profiles = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigurationError(f"Failed to read credentials file {self.path}: {e}")

        entry = profiles.get(self.profile) or {}
        access_key = entry.get("access_key", "")
        signer_type = SignatureType.V4 if access_key else SignatureType.ANONYMOUS
        return Value(
            access_key,
            entry.get("secret_key", ""),
            entry.get("session_token", ""),
            signer_type,
        )


class ChainProvider(Provider):
    """First provider yielding an access key wins; anonymous otherwise."""

    def __init__(self, providers: List[Provider]):
        self.providers = providers
        self._current: Optional[Provider] = None

    def retrieve(self) -> Value:
        for provider in self.providers:
            value = provider.retrieve()
            if value.access_key_id:
                self._current = provider
                return value
        self._current = None
        return Value(signer_type=SignatureType.ANONYMOUS)

    def is_expired(self) -> bool:
        if self._current is None:
            return True
        return self._current.is_expired()


class RefreshingProvider(Provider):
    """
    Provider backed by a fetch function returning credentials and a lifetime.

    Used for short-lived session credentials issued by an external service.
    """

    def __init__(self, fetch: Callable[[], "tuple[Value, float]"], expiry_window: float = 300):
        self._fetch = fetch
        self._expiry_window = expiry_window
        self._expires_at: Optional[float] = None

    def retrieve(self) -> Value:
        value, lifetime = self._fetch()
        self._expires_at = time.time() + lifetime
        return value

    def is_expired(self) -> bool:
        if self._expires_at is None:
            return True
        # Refresh before the credentials actually lapse.
        return time.time() >= self._expires_at - self._expiry_window


class Credentials:
    """
    Thread-safe cache in front of a provider.

    ``get`` only calls the provider again once it reports expiry.
    """

    def __init__(self, provider: Provider):
        self._provider = provider
        self._lock = threading.Lock()
        self._value: Optional[Value] = None
        self._force_refresh = True

    def get(self) -> Value:
        with self._lock:
            if self._force_refresh or self._provider.is_expired():
                try:
                    self._value = self._provider.retrieve()
                except ConfigurationError:
                    raise
                except Exception as e:
                    raise AuthenticationError(f"Failed to retrieve credentials: {e}")
                self._force_refresh = False
            return self._value

    def expire(self) -> None:
        """Force the next ``get`` to call the provider."""
        with self._lock:
            self._force_refresh = True

    @classmethod
    def static_v4(cls, access_key_id: str, secret_access_key: str, session_token: str = "") -> "Credentials":
        return cls(StaticProvider(access_key_id, secret_access_key, session_token, SignatureType.V4))

    @classmethod
    def static_v2(cls, access_key_id: str, secret_access_key: str, session_token: str = "") -> "Credentials":
        return cls(StaticProvider(access_key_id, secret_access_key, session_token, SignatureType.V2))

    @classmethod
    def anonymous(cls) -> "Credentials":
        return cls(StaticProvider("", ""))

    @classmethod
    def default_chain(cls) -> "Credentials":
        return cls(ChainProvider([EnvProvider(), FileProvider()]))
