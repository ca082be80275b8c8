"""
Signed OAuth state and CSRF cookie checks.
"""
import base64
import json

import pytest

from activity_sync.core import state as state_module
from activity_sync.core.errors import ConfigurationError
from activity_sync.core.models import Provider
from activity_sync.core.security import hmac_sign
from activity_sync.core.state import (
    COOKIE_MAX_AGE,
    STATE_TTL_SECONDS,
    OAuthStateCodec,
    cookie_options,
    extract_csrf,
    validate_csrf,
)

from conftest import STATE_SECRET


def _decode_payload(token: str) -> dict:
    encoded = token.split(".")[0]
    return json.loads(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)))


def test_create_and_parse_roundtrip(codec):
    token = codec.create_state("user-1", "/dashboard", Provider.GITHUB)
    payload = codec.parse_state(token)
    assert payload is not None
    assert payload.user_id == "user-1"
    assert payload.redirect_url == "/dashboard"
    assert payload.provider is Provider.GITHUB
    assert payload.code_verifier is None


def test_wire_format_uses_camel_case_and_ms_expiry(codec, monkeypatch):
    monkeypatch.setattr(state_module, "_now_ms", lambda: 1_000_000)
    token = codec.create_state("user-1", "/profile", Provider.TWITTER, code_verifier="v" * 43)
    data = _decode_payload(token)
    assert set(data) == {"userId", "redirectUrl", "provider", "csrf", "exp", "codeVerifier"}
    assert data["exp"] == 1_000_000 + STATE_TTL_SECONDS * 1000


def test_tampered_payload_is_rejected(codec):
    token = codec.create_state("user-1", "/profile", Provider.GITHUB)
    data = _decode_payload(token)
    data["userId"] = "attacker"
    forged = base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")
    assert codec.parse_state(f"{forged}.{token.split('.')[1]}") is None


def test_wrong_secret_and_garbage_are_rejected(codec):
    token = OAuthStateCodec("another-secret").create_state("u", "/profile", Provider.GITHUB)
    assert codec.parse_state(token) is None
    assert codec.parse_state("") is None
    assert codec.parse_state("no-dot") is None
    assert codec.parse_state("!!!.sig") is None


def test_validly_signed_but_malformed_payload_is_rejected(codec):
    data = json.dumps({"userId": "u"}, separators=(",", ":"))
    encoded = base64.urlsafe_b64encode(data.encode()).decode().rstrip("=")
    assert codec.parse_state(f"{encoded}.{hmac_sign(STATE_SECRET, data)}") is None


def test_expired_state_is_rejected(codec, monkeypatch):
    monkeypatch.setattr(state_module, "_now_ms", lambda: 1_000_000)
    token = codec.create_state("u", "/profile", Provider.GITHUB)
    monkeypatch.setattr(state_module, "_now_ms", lambda: 1_000_000 + STATE_TTL_SECONDS * 1000 + 1)
    assert codec.parse_state(token) is None


def test_missing_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        OAuthStateCodec(None).create_state("u", "/profile", Provider.GITHUB)


def test_csrf_double_submit(codec):
    token = codec.create_state("u", "/profile", Provider.LINKEDIN)
    payload = codec.parse_state(token)
    nonce = extract_csrf(token)
    assert nonce == payload.csrf
    assert validate_csrf(payload, nonce)
    assert not validate_csrf(payload, None)
    assert not validate_csrf(payload, nonce + "x")


def test_extract_csrf_on_garbage():
    assert extract_csrf("%%%") is None
    assert extract_csrf(".sig") is None


def test_cookie_options():
    opts = cookie_options(production=True)
    assert opts == {"httponly": True, "secure": True, "samesite": "lax", "max_age": COOKIE_MAX_AGE, "path": "/"}
    assert cookie_options(production=False)["secure"] is False
    assert COOKIE_MAX_AGE > STATE_TTL_SECONDS
