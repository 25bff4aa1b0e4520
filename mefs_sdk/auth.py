"""
Request signing for MEFS SDK.

Signers are pluggable: the client picks one per request from the signer
type its credentials report. The SDK ships an anonymous signer and an
HMAC-SHA256 signer for gateways that accept keyed requests; other schemes
can be registered on the client.
"""

import base64
import hashlib
import hmac
import re
import time
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

from .credentials import SignatureType, Value

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

_SIGNATURE_RE = re.compile(r"Signature=[0-9a-zA-Z+/=]+")


class RequestSigner:
    """Base signer. Returns the headers to add to a request."""

    def sign(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        credentials: Value,
        region: str,
        content_sha256: str = "",
    ) -> Dict[str, str]:
        raise NotImplementedError


class AnonymousSigner(RequestSigner):
    """Adds nothing."""

    def sign(self, method, url, headers, credentials, region, content_sha256=""):
        return {}


class HmacSigner(RequestSigner):
    """
    HMAC-SHA256 request signer.

    The string to sign is the method, path with query, timestamp, region and
    payload hash joined by newlines. The result is sent as::

        Authorization: MEFS-HMAC-SHA256 Credential=<key>/<region>, Signature=<b64>
    """

    algorithm = "MEFS-HMAC-SHA256"

    def __init__(self, clock=time.time):
        self._clock = clock

    def string_to_sign(self, method: str, url: str, timestamp: str, region: str, content_sha256: str) -> str:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return "\n".join([
            method.upper(),
            path,
            timestamp,
            region,
            content_sha256 or UNSIGNED_PAYLOAD,
        ])

    def sign(self, method, url, headers, credentials, region, content_sha256=""):
        timestamp = str(int(self._clock()))
        string_to_sign = self.string_to_sign(method, url, timestamp, region, content_sha256)

        signature = hmac.new(
            credentials.secret_access_key.encode("utf-8"),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).digest()

        signed = {
            "X-Mefs-Date": timestamp,
            "X-Mefs-Content-Sha256": content_sha256 or UNSIGNED_PAYLOAD,
            "Authorization": (
                f"{self.algorithm} Credential={credentials.access_key_id}/{region}, "
                f"Signature={base64.b64encode(signature).decode('utf-8')}"
            ),
        }
        if credentials.session_token:
            signed["X-Mefs-Security-Token"] = credentials.session_token
        return signed

    def verify(self, signature: str, method: str, url: str, timestamp: str, region: str,
               secret_access_key: str, content_sha256: str = "") -> bool:
        """Check a signature produced by :meth:`sign` (e.g. for webhook validation)."""
        string_to_sign = self.string_to_sign(method, url, timestamp, region, content_sha256)
        expected = hmac.new(
            secret_access_key.encode("utf-8"),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return hmac.compare_digest(signature, base64.b64encode(expected).decode("utf-8"))


def resolve_signer_type(credentials: Value, override: SignatureType = SignatureType.DEFAULT) -> SignatureType:
    """
    Pick the signature type for a request.

    A client-level override replaces the provider's choice, except that
    anonymous credentials are never signed.
    """
    if credentials.signer_type is SignatureType.ANONYMOUS:
        return SignatureType.ANONYMOUS
    if override is not SignatureType.DEFAULT:
        return override
    return credentials.signer_type


def default_signers() -> Dict[SignatureType, RequestSigner]:
    hmac_signer = HmacSigner()
    return {
        SignatureType.ANONYMOUS: AnonymousSigner(),
        SignatureType.DEFAULT: hmac_signer,
        SignatureType.V4: hmac_signer,
        SignatureType.V2: hmac_signer,
    }


def redact_signature(authorization: Optional[str]) -> str:
    """Hide the signature part of an Authorization header for tracing."""
    if not authorization:
        return ""
    return _SIGNATURE_RE.sub("Signature=**REDACTED**", authorization)
