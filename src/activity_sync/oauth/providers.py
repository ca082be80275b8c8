from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from activity_sync.core.models import Provider


class ClientAuth(str, Enum):
    """Where client credentials go on token-endpoint requests."""

    BODY = "body"
    BASIC = "basic"


def basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _identity_discord(data: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    return str(data.get("id") or ""), data.get("username")


def _identity_linkedin(data: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    return str(data.get("sub") or ""), data.get("name")


def _identity_github(data: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    raw_id = data.get("id")
    return (str(raw_id) if raw_id is not None else ""), data.get("login")


def _identity_twitter(data: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    user = data.get("data") or data
    return str(user.get("id") or ""), user.get("username")


@dataclass(frozen=True)
class ProviderSpec:
    """Static endpoint and auth-style description of one OAuth provider."""

    provider: Provider
    authorize_url: str
    token_url: str
    user_info_url: str
    revoke_url: str
    revoke_method: str
    scopes: Tuple[str, ...]
    client_auth: ClientAuth
    parse_identity: Callable[[Dict[str, Any]], Tuple[str, Optional[str]]]
    token_accept_json: bool = False
    requires_pkce: bool = False
    supports_refresh: bool = True
    user_info_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


PROVIDER_SPECS: Dict[Provider, ProviderSpec] = {
    Provider.DISCORD: ProviderSpec(
        provider=Provider.DISCORD,
        authorize_url="https://discord.com/api/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        user_info_url="https://discord.com/api/users/@me",
        revoke_url="https://discord.com/api/oauth2/token/revoke",
        revoke_method="POST",
        scopes=("identify", "email", "guilds"),
        client_auth=ClientAuth.BODY,
        parse_identity=_identity_discord,
    ),
    Provider.LINKEDIN: ProviderSpec(
        provider=Provider.LINKEDIN,
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        user_info_url="https://api.linkedin.com/v2/userinfo",
        revoke_url="https://www.linkedin.com/oauth/v2/revoke",
        revoke_method="POST",
        scopes=("openid", "profile", "email", "w_member_social"),
        client_auth=ClientAuth.BODY,
        parse_identity=_identity_linkedin,
    ),
    Provider.GITHUB: ProviderSpec(
        provider=Provider.GITHUB,
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        user_info_url="https://api.github.com/user",
        revoke_url="https://api.github.com/applications/{client_id}/grant",
        revoke_method="DELETE",
        scopes=("read:user", "user:email", "public_repo"),
        client_auth=ClientAuth.BODY,
        parse_identity=_identity_github,
        token_accept_json=True,
        supports_refresh=False,
        user_info_headers={"User-Agent": "activity-sync", "Accept": "application/vnd.github+json"},
    ),
    Provider.TWITTER: ProviderSpec(
        provider=Provider.TWITTER,
        authorize_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        user_info_url="https://api.twitter.com/2/users/me",
        revoke_url="https://api.twitter.com/2/oauth2/revoke",
        revoke_method="POST",
        scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
        client_auth=ClientAuth.BASIC,
        parse_identity=_identity_twitter,
        requires_pkce=True,
    ),
}


# PUBLIC_INTERFACE
def get_provider_spec(provider: Provider) -> ProviderSpec:
    """Static description of a provider's OAuth endpoints."""
    return PROVIDER_SPECS[Provider(provider)]


def token_request(
    spec: ProviderSpec,
    client_id: str,
    client_secret: str,
    form: Dict[str, str],
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Headers and form body for a token-endpoint call, with credentials placed per provider style."""
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    body = dict(form)
    if spec.token_accept_json:
        headers["Accept"] = "application/json"
    if spec.client_auth is ClientAuth.BASIC:
        headers["Authorization"] = basic_auth_header(client_id, client_secret)
        body["client_id"] = client_id
    else:
        body["client_id"] = client_id
        body["client_secret"] = client_secret
    return headers, body
