"""
OAuth 1.0a request signing (HMAC-SHA1) for the Flickr REST API.

Stateless helper: it never stores or refreshes credentials.  Obtaining the
long-lived token pair is done once, out of band, by the operator's OAuth
login flow; the results are kept in the keychain (see ``shared.secrets``).
"""

from __future__ import annotations

import base64
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import quote

from cryptography.hazmat.primitives import hashes, hmac


@dataclass(frozen=True)
class OAuthCredentials:
    consumer_key: str
    consumer_secret: str
    token: str
    token_secret: str

    def __repr__(self) -> str:
        return f"OAuthCredentials(consumer_key={self.consumer_key!r}, token=***)"


def _encode(value: str) -> str:
    """RFC 3986 percent-encoding as required by OAuth 1.0a."""
    return quote(str(value), safe="~")


def signature_base_string(method: str, url: str, params: Mapping[str, str]) -> str:
    pairs = sorted((_encode(k), _encode(v)) for k, v in params.items())
    normalized = "&".join(f"{k}={v}" for k, v in pairs)
    return "&".join(_encode(part) for part in (method.upper(), url, normalized))


def hmac_sha1_signature(base_string: str, consumer_secret: str, token_secret: str) -> str:
    key = f"{_encode(consumer_secret)}&{_encode(token_secret)}".encode()
    mac = hmac.HMAC(key, hashes.SHA1())
    mac.update(base_string.encode())
    return base64.b64encode(mac.finalize()).decode()


def sign_request(
    method: str,
    url: str,
    params: Mapping[str, str],
    credentials: OAuthCredentials,
    *,
    nonce: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> Dict[str, str]:
    """Return ``params`` extended with the OAuth protocol parameters and
    ``oauth_signature``.

    Args:
        method: HTTP method (``"GET"``).
        url: Request URL without query string.
        params: API parameters (``method``, ``photo_id``, ...).
        credentials: Consumer and token credentials.
        nonce: Override for tests; random otherwise.
        timestamp: Override for tests; current epoch seconds otherwise.
    """
    signed: Dict[str, str] = {
        "oauth_nonce": nonce or uuid.uuid4().hex,
        "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
        "oauth_consumer_key": credentials.consumer_key,
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_version": "1.0",
        "oauth_token": credentials.token,
    }
    signed.update({k: str(v) for k, v in params.items()})
    base = signature_base_string(method, url, signed)
    signed["oauth_signature"] = hmac_sha1_signature(
        base, credentials.consumer_secret, credentials.token_secret
    )
    return signed
