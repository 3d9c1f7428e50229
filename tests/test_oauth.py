"""
Tests for OAuth 1.0a request signing.
"""

import base64
import hashlib
import hmac

from shared.oauth import (
    OAuthCredentials,
    hmac_sha1_signature,
    sign_request,
    signature_base_string,
)

CREDENTIALS = OAuthCredentials(
    consumer_key="dpf43f3p2l4k3l03",
    consumer_secret="kd94hf93k423kf44",
    token="nnch734d00sl2jdk",
    token_secret="pfkkdhi9sl3r4s00",
)


def test_base_string_sorts_and_encodes():
    base = signature_base_string(
        "get",
        "https://www.flickr.com/services/rest",
        {"b": "two words", "a": "x/y"},
    )
    assert base == "GET&https%3A%2F%2Fwww.flickr.com%2Fservices%2Frest&a%3Dx%252Fy%26b%3Dtwo%2520words"


def test_hmac_matches_reference_implementation():
    base = "GET&https%3A%2F%2Fexample.com&a%3D1"
    expected = base64.b64encode(
        hmac.new(b"kd94hf93k423kf44&pfkkdhi9sl3r4s00", base.encode(), hashlib.sha1).digest()
    ).decode()
    assert hmac_sha1_signature(base, "kd94hf93k423kf44", "pfkkdhi9sl3r4s00") == expected


def test_sign_request_adds_protocol_parameters():
    signed = sign_request(
        "GET",
        "https://www.flickr.com/services/rest",
        {"method": "flickr.test.login"},
        CREDENTIALS,
        nonce="fixednonce",
        timestamp=1714550000,
    )
    assert signed["method"] == "flickr.test.login"
    assert signed["oauth_nonce"] == "fixednonce"
    assert signed["oauth_timestamp"] == "1714550000"
    assert signed["oauth_consumer_key"] == "dpf43f3p2l4k3l03"
    assert signed["oauth_token"] == "nnch734d00sl2jdk"
    assert signed["oauth_signature_method"] == "HMAC-SHA1"
    assert signed["oauth_version"] == "1.0"

    unsigned = {k: v for k, v in signed.items() if k != "oauth_signature"}
    base = signature_base_string("GET", "https://www.flickr.com/services/rest", unsigned)
    assert signed["oauth_signature"] == hmac_sha1_signature(base, "kd94hf93k423kf44", "pfkkdhi9sl3r4s00")


def test_signature_is_deterministic_for_fixed_nonce():
    kwargs = dict(nonce="n", timestamp=1)
    first = sign_request("GET", "https://example.com", {"a": "1"}, CREDENTIALS, **kwargs)
    second = sign_request("GET", "https://example.com", {"a": "1"}, CREDENTIALS, **kwargs)
    changed = sign_request("GET", "https://example.com", {"a": "2"}, CREDENTIALS, **kwargs)
    assert first["oauth_signature"] == second["oauth_signature"]
    assert first["oauth_signature"] != changed["oauth_signature"]


def test_repr_hides_secrets():
    text = repr(CREDENTIALS)
    assert "kd94hf93k423kf44" not in text
    assert "pfkkdhi9sl3r4s00" not in text
    assert "nnch734d00sl2jdk" not in text
