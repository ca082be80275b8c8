from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import urlencode

from activity_sync.core.errors import ConfigurationError
from activity_sync.core.models import Provider
from activity_sync.core.settings import Settings
from activity_sync.oauth.providers import get_provider_spec

DEFAULT_REDIRECT_PATH = "/profile"


# PUBLIC_INTERFACE
def safe_redirect_path(path: Optional[str]) -> str:
    """Accept only same-origin relative paths; anything else becomes /profile."""
    if not path or not path.startswith("/") or path.startswith("//") or "\\" in path:
        return DEFAULT_REDIRECT_PATH
    return path


# PUBLIC_INTERFACE
def callback_uri(origin: str, provider: Provider) -> str:
    """Redirect URI registered with the provider for this deployment."""
    return f"{origin.rstrip('/')}/api/auth/callback/{Provider(provider).value}"


# PUBLIC_INTERFACE
def build_authorization_url(
    settings: Settings,
    provider: Provider,
    redirect_uri: str,
    state: str,
    code_challenge: Optional[str] = None,
) -> str:
    """Provider consent URL. Raises ConfigurationError when the client id is not set."""
    spec = get_provider_spec(provider)
    creds = settings.oauth.credentials(spec.provider)
    if creds is None:
        raise ConfigurationError(f"OAuth not configured for {spec.provider.value}")

    params: Dict[str, str] = {
        "client_id": creds.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": spec.scope,
        "state": state,
    }
    if spec.requires_pkce:
        if not code_challenge:
            raise ValueError(f"{spec.provider.value} requires a PKCE code challenge")
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    return f"{spec.authorize_url}?{urlencode(params)}"
