from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from activity_sync.core.errors import ConfigurationError, TokenDecryptionError
from activity_sync.core.logging import get_logger

logger = get_logger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16


@dataclass
class PKCEBundle:
    verifier: str
    challenge: str
    method: str = "S256"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


# PUBLIC_INTERFACE
def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two strings without early exit on the first differing position."""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


# PUBLIC_INTERFACE
def hmac_sign(secret: str, data: str) -> str:
    """HMAC-SHA256 of data, base64url without padding."""
    mac = hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).digest()
    return _b64url(mac)


def _decode_key(raw: str) -> bytes:
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as ex:
        raise ConfigurationError("TOKEN_ENCRYPTION_KEY must be a valid base64 string") from ex
    if len(key) != KEY_LENGTH:
        raise ConfigurationError("TOKEN_ENCRYPTION_KEY must be a 32-byte base64-encoded string")
    return key


class TokenCipher:
    """AES-256-GCM encryption for stored OAuth tokens plus HMAC-SHA256 signing.

    Blobs are base64(nonce(16) + tag(16) + ciphertext). With ``strict`` set, the
    safe wrappers refuse to run without a key; otherwise they pass plaintext
    through with a warning.
    """

    def __init__(self, encryption_key: Optional[str], signing_secret: Optional[str] = None, strict: bool = False):
        self._aead: Optional[AESGCM] = AESGCM(_decode_key(encryption_key)) if encryption_key else None
        self._signing_secret = signing_secret or None
        self.strict = strict

    @property
    def has_key(self) -> bool:
        return self._aead is not None

    def _require_aead(self) -> AESGCM:
        if self._aead is None:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY is not configured")
        return self._aead

    # PUBLIC_INTERFACE
    def encrypt(self, plaintext: str) -> str:
        """Encrypt with a fresh random nonce."""
        aead = self._require_aead()
        nonce = os.urandom(NONCE_LENGTH)
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    # PUBLIC_INTERFACE
    def decrypt(self, blob: str) -> str:
        """Decrypt a blob; any malformed or tampered input raises TokenDecryptionError."""
        aead = self._require_aead()
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as ex:
            raise TokenDecryptionError("Encrypted token is not valid base64") from ex
        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise TokenDecryptionError("Encrypted token is too short")
        nonce = combined[:NONCE_LENGTH]
        tag = combined[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = combined[NONCE_LENGTH + TAG_LENGTH:]
        try:
            plain = aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as ex:
            raise TokenDecryptionError("Encrypted token failed authentication") from ex
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise TokenDecryptionError("Decrypted token is not valid UTF-8") from ex

    # PUBLIC_INTERFACE
    def encrypt_safe(self, plaintext: str) -> str:
        """Encrypt when a key exists; strict mode raises without one, permissive mode stores plaintext."""
        if not self.has_key:
            if self.strict:
                raise ConfigurationError("TOKEN_ENCRYPTION_KEY is required in production")
            logger.warning("TOKEN_ENCRYPTION_KEY not set; storing token unencrypted")
            return plaintext
        return self.encrypt(plaintext)

    # PUBLIC_INTERFACE
    def decrypt_safe(self, value: str) -> str:
        """Decrypt when possible; values that were never encrypted come back unchanged."""
        if not self.has_key:
            return value
        try:
            return self.decrypt(value)
        except TokenDecryptionError:
            logger.warning("Stored token could not be decrypted; treating it as plaintext")
            return value

    def _require_secret(self) -> str:
        if not self._signing_secret:
            raise ConfigurationError("Signing secret is not configured")
        return self._signing_secret

    # PUBLIC_INTERFACE
    def sign(self, data: str) -> str:
        """HMAC-SHA256 signature of data (base64url, unpadded)."""
        return hmac_sign(self._require_secret(), data)

    # PUBLIC_INTERFACE
    def verify(self, data: str, signature: str) -> bool:
        """Constant-time check of a signature produced by sign()."""
        return constant_time_equals(self.sign(data), signature)


# PUBLIC_INTERFACE
def generate_code_verifier() -> str:
    """RFC 7636 verifier: 32 random bytes, base64url, 43 characters."""
    return _b64url(os.urandom(32))


# PUBLIC_INTERFACE
def generate_code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(SHA256(verifier)) without padding."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


# PUBLIC_INTERFACE
def generate_pkce() -> PKCEBundle:
    """Generate PKCE code_verifier and S256 code_challenge."""
    verifier = generate_code_verifier()
    return PKCEBundle(verifier=verifier, challenge=generate_code_challenge(verifier))


# PUBLIC_INTERFACE
def generate_nonce(size: int = 32) -> str:
    """Random base64url token used for CSRF nonces."""
    return _b64url(os.urandom(size))
