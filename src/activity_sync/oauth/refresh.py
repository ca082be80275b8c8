from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

import httpx

from activity_sync.connectors.base import parse_timestamp
from activity_sync.core.logging import get_logger
from activity_sync.core.models import Provider, RefreshResult, TokenPair
from activity_sync.core.observability import increment_metric
from activity_sync.core.settings import Settings
from activity_sync.oauth.providers import get_provider_spec, token_request

logger = get_logger(__name__)

DEFAULT_BUFFER_MINUTES = 5


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def is_token_expired(
    expires_at: Union[datetime, str, None],
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
    now: Optional[datetime] = None,
) -> bool:
    """True once now >= expires_at - buffer. A missing expiry never expires."""
    if not expires_at:
        return False
    expiry = parse_timestamp(expires_at)
    if expiry is None:
        # unparseable expiry counts as expired
        return True
    return (now or _now_utc()) >= expiry - timedelta(minutes=buffer_minutes)


# PUBLIC_INTERFACE
def supports_refresh(provider: Provider) -> bool:
    """GitHub OAuth app tokens do not expire and have no refresh grant."""
    return get_provider_spec(provider).supports_refresh


# PUBLIC_INTERFACE
def compute_expiry(expires_in: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry from an `expires_in` seconds value, or None when absent."""
    if not expires_in:
        return None
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return (now or _now_utc()) + timedelta(seconds=seconds)


class TokenRefresher:
    """Per-provider refresh-token exchange against the provider token endpoint."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.sync.HTTP_TIMEOUT_SECONDS

    # PUBLIC_INTERFACE
    async def refresh_token(self, provider: Provider, refresh_token: str) -> RefreshResult:
        """Exchange a refresh token for a new token pair. Never raises for HTTP or network failures."""
        spec = get_provider_spec(provider)
        name = spec.provider.value
        if not spec.supports_refresh:
            return RefreshResult(success=False, error=f"Provider {name} does not support token refresh")

        creds = self.settings.oauth.credentials(spec.provider)
        if creds is None:
            return RefreshResult(success=False, error=f"Missing OAuth credentials for {name}")

        headers, body = token_request(
            spec,
            creds.client_id,
            creds.client_secret,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        increment_metric("token_refresh_total", 1.0)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(spec.token_url, data=body, headers=headers)
            if resp.status_code >= 400:
                increment_metric("token_refresh_failed_total", 1.0)
                logger.warning("token_refresh_failed", extra={"provider": name, "status": resp.status_code})
                if resp.status_code in (400, 401):
                    return RefreshResult(success=False, error=f"Refresh token is invalid or expired for {name}")
                return RefreshResult(success=False, error=f"Token refresh failed: HTTP {resp.status_code}")
            data: Dict[str, Any] = resp.json()
        except httpx.HTTPError as ex:
            increment_metric("token_refresh_failed_total", 1.0)
            logger.warning("token_refresh_error", extra={"provider": name, "error": str(ex)})
            return RefreshResult(success=False, error=str(ex) or "Unknown error during token refresh")
        except ValueError:
            increment_metric("token_refresh_failed_total", 1.0)
            return RefreshResult(success=False, error="No access token in refresh response")

        access = data.get("access_token") if isinstance(data, dict) else None
        if not access:
            increment_metric("token_refresh_failed_total", 1.0)
            return RefreshResult(success=False, error="No access token in refresh response")

        tokens = TokenPair(
            access_token=access,
            # keep the old refresh token when none is returned
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=compute_expiry(data.get("expires_in")),
        )
        logger.info("token_refreshed", extra={"provider": name})
        return RefreshResult(success=True, tokens=tokens)

    # PUBLIC_INTERFACE
    async def refresh_if_needed(self, provider: Provider, tokens: TokenPair) -> RefreshResult:
        """Return current tokens while valid; refresh them once inside the expiry buffer."""
        if not is_token_expired(tokens.expires_at):
            return RefreshResult(success=True, tokens=tokens)
        provider = Provider(provider)
        if not supports_refresh(provider):
            if provider is Provider.GITHUB:
                return RefreshResult(success=True, tokens=tokens)
            return RefreshResult(success=False, error=f"Token expired and {provider.value} does not support refresh")
        if not tokens.refresh_token:
            return RefreshResult(success=False, error=f"Token expired but no refresh token available for {provider.value}")
        return await self.refresh_token(provider, tokens.refresh_token)
