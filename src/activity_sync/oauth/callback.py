from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx

from activity_sync.core.errors import StoreError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import CallbackResult, OAuthStatePayload, Provider
from activity_sync.core.observability import increment_metric
from activity_sync.core.security import TokenCipher
from activity_sync.core.settings import Settings
from activity_sync.core.state import OAuthStateCodec, validate_csrf
from activity_sync.core.store import ConnectionStore
from activity_sync.oauth.authorize import DEFAULT_REDIRECT_PATH, callback_uri, safe_redirect_path
from activity_sync.oauth.providers import ProviderSpec, get_provider_spec, token_request
from activity_sync.oauth.refresh import compute_expiry

logger = get_logger(__name__)

# Display messages per error code. Clients branch on the code.
ERROR_MESSAGES: Dict[str, str] = {
    "invalid_state": "Invalid or expired OAuth state",
    "provider_mismatch": "OAuth provider mismatch",
    "csrf_mismatch": "CSRF validation failed",
    "token_exchange_failed": "Failed to exchange authorization code",
    "user_info_failed": "Failed to fetch user info",
    "database_error": "Failed to save connection",
}


class CallbackError(Exception):
    """A callback step failed with a stable error code."""

    def __init__(self, code: str, detail: Optional[str] = None):
        super().__init__(detail or ERROR_MESSAGES.get(code, code))
        self.code = code
        self.detail = detail


def _with_query(origin: str, path: str, params: Dict[str, str]) -> str:
    sep = "&" if "?" in path else "?"
    return f"{origin.rstrip('/')}{path}{sep}{urlencode(params)}"


class OAuthCallbackHandler:
    """Completes an authorization-code flow and stores the resulting connection."""

    def __init__(
        self,
        settings: Settings,
        codec: OAuthStateCodec,
        cipher: TokenCipher,
        store: ConnectionStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.codec = codec
        self.cipher = cipher
        self.store = store
        self.transport = transport
        self.timeout = settings.sync.HTTP_TIMEOUT_SECONDS

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _exchange_code(
        self, spec: ProviderSpec, code: str, redirect_uri: str, code_verifier: Optional[str]
    ) -> Dict[str, Any]:
        creds = self.settings.oauth.credentials(spec.provider)
        if creds is None:
            raise CallbackError("token_exchange_failed", f"Missing OAuth credentials for {spec.provider.value}")

        form = {"code": code, "redirect_uri": redirect_uri, "grant_type": "authorization_code"}
        if spec.requires_pkce:
            if not code_verifier:
                raise CallbackError("token_exchange_failed", "Missing PKCE code verifier")
            form["code_verifier"] = code_verifier
        headers, body = token_request(spec, creds.client_id, creds.client_secret, form)

        try:
            async with self._client() as client:
                resp = await client.post(spec.token_url, data=body, headers=headers)
            data = resp.json() if resp.status_code < 400 else None
        except (httpx.HTTPError, ValueError) as ex:
            raise CallbackError("token_exchange_failed", str(ex)) from ex
        if resp.status_code >= 400:
            raise CallbackError("token_exchange_failed", f"HTTP {resp.status_code}")
        # GitHub answers 200 with an error body for bad codes
        if not isinstance(data, dict) or not data.get("access_token"):
            raise CallbackError("token_exchange_failed", "No access token in response")
        return data

    async def _fetch_identity(self, spec: ProviderSpec, access_token: str) -> Tuple[str, Optional[str]]:
        headers = {"Authorization": f"Bearer {access_token}", **spec.user_info_headers}
        try:
            async with self._client() as client:
                resp = await client.get(spec.user_info_url, headers=headers)
            data = resp.json() if resp.status_code < 400 else None
        except (httpx.HTTPError, ValueError) as ex:
            raise CallbackError("user_info_failed", str(ex)) from ex
        if resp.status_code >= 400 or not isinstance(data, dict):
            raise CallbackError("user_info_failed", f"HTTP {resp.status_code}")
        provider_user_id, username = spec.parse_identity(data)
        if not provider_user_id:
            raise CallbackError("user_info_failed", "Provider response has no user id")
        return provider_user_id, username

    def _resolve_state(self, provider: Provider, state: str, csrf_cookie: Optional[str]) -> OAuthStatePayload:
        payload = self.codec.parse_state(state)
        if payload is None:
            raise CallbackError("invalid_state")
        if payload.provider is not provider:
            raise CallbackError("provider_mismatch")
        if not validate_csrf(payload, csrf_cookie):
            raise CallbackError("csrf_mismatch")
        return payload

    # PUBLIC_INTERFACE
    async def handle_callback(
        self,
        provider: Provider,
        code: str,
        state: str,
        origin: str,
        csrf_cookie: Optional[str],
        pkce_verifier: Optional[str] = None,
    ) -> CallbackResult:
        """Validate state, exchange the code, fetch identity and upsert the connection.

        Never raises; every failure becomes a CallbackResult with an error code and
        a redirect carrying ``oauth=error``.
        """
        provider = Provider(provider)
        increment_metric("oauth_callbacks_total", 1.0)
        redirect_path = DEFAULT_REDIRECT_PATH
        try:
            payload = self._resolve_state(provider, state, csrf_cookie)
            redirect_path = safe_redirect_path(payload.redirect_url)
            spec = get_provider_spec(provider)

            tokens = await self._exchange_code(
                spec, code, callback_uri(origin, provider), pkce_verifier or payload.code_verifier
            )
            provider_user_id, username = await self._fetch_identity(spec, tokens["access_token"])

            refresh = tokens.get("refresh_token")
            try:
                self.store.upsert_connection(
                    user_id=payload.user_id,
                    provider=provider.value,
                    provider_user_id=provider_user_id,
                    provider_username=username or None,
                    access_token=self.cipher.encrypt_safe(tokens["access_token"]),
                    refresh_token=self.cipher.encrypt_safe(refresh) if refresh else None,
                    token_expires_at=compute_expiry(tokens.get("expires_in")),
                )
            except StoreError as ex:
                raise CallbackError("database_error", str(ex)) from ex
        except CallbackError as ex:
            increment_metric("oauth_callbacks_failed_total", 1.0)
            logger.warning(
                "oauth_callback_failed",
                extra={"provider": provider.value, "code": ex.code, "detail": ex.detail},
            )
            message = ERROR_MESSAGES.get(ex.code, str(ex))
            return CallbackResult(
                success=False,
                error=message,
                error_code=ex.code,
                redirect_url=_with_query(origin, redirect_path, {"oauth": "error", "code": ex.code, "message": message}),
            )
        except Exception as ex:
            increment_metric("oauth_callbacks_failed_total", 1.0)
            logger.exception("oauth_callback_error", extra={"provider": provider.value})
            message = str(ex) or "Unknown error"
            return CallbackResult(
                success=False,
                error=message,
                error_code="unknown",
                redirect_url=_with_query(origin, redirect_path, {"oauth": "error", "code": "unknown", "message": message}),
            )

        logger.info("oauth_connected", extra={"provider": provider.value, "user_id": payload.user_id})
        return CallbackResult(
            success=True,
            redirect_url=_with_query(origin, redirect_path, {"oauth": "success", "provider": provider.value}),
        )
