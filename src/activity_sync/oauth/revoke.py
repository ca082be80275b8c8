from __future__ import annotations

from typing import Dict, List, Optional

import httpx

from activity_sync.core.logging import get_logger
from activity_sync.core.models import Provider, RevokeResult
from activity_sync.core.settings import Settings
from activity_sync.oauth.providers import ClientAuth, basic_auth_header, get_provider_spec
from activity_sync.connectors.github.client import GITHUB_API_VERSION

logger = get_logger(__name__)

# A token the provider already considers invalid counts as revoked.
ALREADY_INVALID_STATUSES = (400, 401)


class TokenRevoker:
    """Best-effort provider-side revocation used when a user disconnects a provider."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.sync.HTTP_TIMEOUT_SECONDS

    async def _send(self, method: str, url: str, headers: Dict[str, str], **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    # PUBLIC_INTERFACE
    async def revoke_token(self, provider: Provider, access_token: str, token_type_hint: str = "access_token") -> RevokeResult:
        """Revoke one token. 2xx and 400/401 are success; other failures are reported, not raised."""
        spec = get_provider_spec(provider)
        name = spec.provider.value
        creds = self.settings.oauth.credentials(spec.provider)
        if creds is None:
            logger.error("token_revoke_missing_credentials", extra={"provider": name})
            return RevokeResult(success=False, error="Missing credentials")

        url = spec.revoke_url.replace("{client_id}", creds.client_id)
        try:
            if spec.provider is Provider.GITHUB:
                headers = {
                    "Accept": "application/vnd.github+json",
                    "Authorization": basic_auth_header(creds.client_id, creds.client_secret),
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                }
                resp = await self._send(spec.revoke_method, url, headers, json={"access_token": access_token})
            elif spec.client_auth is ClientAuth.BASIC:
                headers = {
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Authorization": basic_auth_header(creds.client_id, creds.client_secret),
                }
                form = {"token": access_token, "client_id": creds.client_id, "token_type_hint": token_type_hint}
                resp = await self._send(spec.revoke_method, url, headers, data=form)
            else:
                headers = {"Content-Type": "application/x-www-form-urlencoded"}
                form = {"token": access_token, "client_id": creds.client_id, "client_secret": creds.client_secret}
                resp = await self._send(spec.revoke_method, url, headers, data=form)
        except httpx.HTTPError as ex:
            logger.warning("token_revoke_error", extra={"provider": name, "error": str(ex)})
            return RevokeResult(success=False, error=str(ex) or "Unknown error")

        if resp.is_success:
            return RevokeResult(success=True)
        if resp.status_code in ALREADY_INVALID_STATUSES:
            logger.warning("token_revoke_already_invalid", extra={"provider": name, "status": resp.status_code})
            return RevokeResult(success=True)
        logger.error("token_revoke_failed", extra={"provider": name, "status": resp.status_code})
        return RevokeResult(success=False, error=f"HTTP {resp.status_code}: {resp.text}")

    # PUBLIC_INTERFACE
    async def revoke_all_tokens(
        self,
        provider: Provider,
        access_token: Optional[str],
        refresh_token: Optional[str],
    ) -> RevokeResult:
        """Revoke the access token, plus the refresh token where the provider revokes them separately."""
        provider = Provider(provider)
        results: List[RevokeResult] = []
        if access_token:
            results.append(await self.revoke_token(provider, access_token))
        if refresh_token and provider is Provider.TWITTER:
            results.append(await self.revoke_token(provider, refresh_token, token_type_hint="refresh_token"))

        any_success = not results or any(r.success for r in results)
        errors = "; ".join(r.error for r in results if not r.success and r.error)
        return RevokeResult(success=any_success, error=errors or None)
