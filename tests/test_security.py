"""
Token cipher, signing and PKCE helpers.
"""
import base64
import hashlib

import pytest

from activity_sync.core.errors import ConfigurationError, TokenDecryptionError
from activity_sync.core.security import (
    TokenCipher,
    constant_time_equals,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce,
    hmac_sign,
)

from conftest import TEST_KEY


def test_encrypt_decrypt_roundtrip_uses_fresh_nonce():
    cipher = TokenCipher(TEST_KEY)
    a = cipher.encrypt("gho_secret")
    b = cipher.encrypt("gho_secret")
    assert a != b
    assert cipher.decrypt(a) == "gho_secret"
    # nonce(16) + tag(16) + ciphertext
    assert len(base64.b64decode(a)) == 32 + len("gho_secret")


@pytest.mark.parametrize("plaintext", ["", "tökén-\U0001f511-中文", "x" * 10000])
def test_roundtrip_edge_plaintexts(plaintext):
    cipher = TokenCipher(TEST_KEY)
    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext


# nonce edges, tag edges, ciphertext
@pytest.mark.parametrize("index", [0, 15, 16, 31, -1])
def test_decrypt_rejects_tampered_blob(index):
    cipher = TokenCipher(TEST_KEY)
    raw = bytearray(base64.b64decode(cipher.encrypt("token")))
    raw[index] ^= 0x01
    with pytest.raises(TokenDecryptionError):
        cipher.decrypt(base64.b64encode(bytes(raw)).decode())


def test_decrypt_rejects_short_and_non_base64_input():
    cipher = TokenCipher(TEST_KEY)
    with pytest.raises(TokenDecryptionError):
        cipher.decrypt(base64.b64encode(b"short").decode())
    with pytest.raises(TokenDecryptionError):
        cipher.decrypt("not base64 at all!")


def test_key_must_decode_to_32_bytes():
    with pytest.raises(ConfigurationError):
        TokenCipher(base64.b64encode(b"too-short").decode())


def test_safe_wrappers_without_key():
    permissive = TokenCipher(None)
    assert permissive.encrypt_safe("plain") == "plain"
    assert permissive.decrypt_safe("plain") == "plain"

    strict = TokenCipher(None, strict=True)
    with pytest.raises(ConfigurationError):
        strict.encrypt_safe("plain")
    assert strict.decrypt_safe("plain") == "plain"


def test_decrypt_safe_passes_through_legacy_plaintext():
    cipher = TokenCipher(TEST_KEY)
    assert cipher.decrypt_safe("legacy-plaintext-token") == "legacy-plaintext-token"
    assert cipher.decrypt_safe(cipher.encrypt_safe("x")) == "x"


def test_sign_and_verify():
    cipher = TokenCipher(TEST_KEY, signing_secret="s3cret")
    sig = cipher.sign("payload")
    assert sig == hmac_sign("s3cret", "payload")
    assert "=" not in sig
    assert cipher.verify("payload", sig)
    assert not cipher.verify("payload2", sig)
    with pytest.raises(ConfigurationError):
        TokenCipher(TEST_KEY).sign("payload")


def test_constant_time_equals_handles_none_and_length():
    assert constant_time_equals("abc", "abc")
    assert not constant_time_equals("abc", "abcd")
    assert not constant_time_equals(None, "abc")


def test_pkce_verifier_and_challenge():
    verifier = generate_code_verifier()
    assert len(verifier) == 43
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    assert generate_code_challenge(verifier) == expected

    bundle = generate_pkce()
    assert bundle.method == "S256"
    assert bundle.challenge == generate_code_challenge(bundle.verifier)
    assert generate_pkce().verifier != bundle.verifier
