from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Optional

from pydantic import ValidationError

from activity_sync.core.errors import ConfigurationError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import OAuthStatePayload, Provider
from activity_sync.core.security import constant_time_equals, generate_nonce, hmac_sign

logger = get_logger(__name__)

STATE_COOKIE_NAME = "oauth_state"
PKCE_COOKIE_NAME = "oauth_pkce_verifier"
STATE_TTL_SECONDS = 5 * 60
# Must stay longer than STATE_TTL_SECONDS.
COOKIE_MAX_AGE = 600


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _now_ms() -> int:
    return int(time.time() * 1000)


def cookie_options(production: bool) -> dict:
    """Attributes shared by the oauth_state and oauth_pkce_verifier cookies."""
    return {
        "httponly": True,
        "secure": production,
        "samesite": "lax",
        "max_age": COOKIE_MAX_AGE,
        "path": "/",
    }


class OAuthStateCodec:
    """Signed, time-boxed OAuth `state` tokens of the form base64url(json).signature."""

    def __init__(self, secret: Optional[str], ttl_seconds: int = STATE_TTL_SECONDS):
        self._secret = secret or None
        self.ttl_seconds = ttl_seconds

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("OAUTH_STATE_SECRET environment variable is required")
        return self._secret

    # PUBLIC_INTERFACE
    def create_state(
        self,
        user_id: str,
        redirect_url: str,
        provider: Provider,
        code_verifier: Optional[str] = None,
    ) -> str:
        """Issue a signed state with a fresh CSRF nonce and expiry."""
        secret = self._require_secret()
        payload = OAuthStatePayload(
            user_id=user_id,
            redirect_url=redirect_url,
            provider=provider,
            csrf=generate_nonce(32),
            exp=_now_ms() + self.ttl_seconds * 1000,
            code_verifier=code_verifier,
        )
        data = json.dumps(
            payload.model_dump(mode="json", by_alias=True, exclude_none=True),
            separators=(",", ":"),
        )
        signature = hmac_sign(secret, data)
        return f"{_b64url_encode(data.encode('utf-8'))}.{signature}"

    # PUBLIC_INTERFACE
    def parse_state(self, token: Optional[str]) -> Optional[OAuthStatePayload]:
        """Verify signature and expiry. Returns None for anything invalid."""
        if not token:
            logger.warning("oauth_state_invalid", extra={"reason": "missing"})
            return None
        encoded, _, signature = token.partition(".")
        if not encoded or not signature:
            logger.warning("oauth_state_invalid", extra={"reason": "format"})
            return None
        secret = self._require_secret()
        try:
            data = _b64url_decode(encoded).decode("utf-8")
        except (binascii.Error, ValueError):
            logger.warning("oauth_state_invalid", extra={"reason": "encoding"})
            return None
        if not constant_time_equals(hmac_sign(secret, data), signature):
            logger.warning("oauth_state_invalid", extra={"reason": "signature"})
            return None
        try:
            payload = OAuthStatePayload.model_validate(json.loads(data))
        except (ValueError, ValidationError):
            logger.warning("oauth_state_invalid", extra={"reason": "payload"})
            return None
        if _now_ms() > payload.exp:
            logger.warning("oauth_state_invalid", extra={"reason": "expired"})
            return None
        return payload


# PUBLIC_INTERFACE
def extract_csrf(token: str) -> Optional[str]:
    """Read the CSRF nonce from a state without verifying it (used when setting the cookie)."""
    encoded = token.split(".", 1)[0]
    if not encoded:
        return None
    try:
        payload = json.loads(_b64url_decode(encoded).decode("utf-8"))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    csrf = payload.get("csrf")
    return csrf if isinstance(csrf, str) else None


# PUBLIC_INTERFACE
def validate_csrf(payload: OAuthStatePayload, cookie_value: Optional[str]) -> bool:
    """Double-submit check between the state nonce and the oauth_state cookie."""
    if not cookie_value:
        logger.warning("oauth_csrf_invalid", extra={"reason": "missing_cookie"})
        return False
    if not constant_time_equals(cookie_value, payload.csrf):
        logger.warning("oauth_csrf_invalid", extra={"reason": "mismatch"})
        return False
    return True
