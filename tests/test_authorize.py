"""
Authorization URL building, redirect sanitizing and provider token-request styles.
"""
from urllib.parse import parse_qs, urlparse

import pytest

from activity_sync.core.errors import ConfigurationError
from activity_sync.core.models import Provider
from activity_sync.oauth.authorize import build_authorization_url, callback_uri, safe_redirect_path
from activity_sync.oauth.providers import get_provider_spec, token_request

from conftest import make_settings


@pytest.mark.parametrize("path,expected", [
    ("/settings", "/settings"),
    ("/settings?tab=1", "/settings?tab=1"),
    (None, "/profile"),
    ("", "/profile"),
    ("https://evil.example", "/profile"),
    ("//evil.example", "/profile"),
    ("/\\evil.example", "/profile"),
])
def test_safe_redirect_path(path, expected):
    assert safe_redirect_path(path) == expected


def test_callback_uri():
    assert callback_uri("https://app.example.com/", Provider.LINKEDIN) == "https://app.example.com/api/auth/callback/linkedin"


def test_linkedin_authorization_url():
    url = build_authorization_url(make_settings(), Provider.LINKEDIN, "https://app/cb", "st")
    parsed = urlparse(url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://www.linkedin.com/oauth/v2/authorization"
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    assert params == {
        "client_id": "linkedin-id",
        "redirect_uri": "https://app/cb",
        "response_type": "code",
        "scope": "openid profile email w_member_social",
        "state": "st",
    }


def test_twitter_requires_challenge():
    settings = make_settings()
    with pytest.raises(ValueError):
        build_authorization_url(settings, Provider.TWITTER, "https://app/cb", "st")
    url = build_authorization_url(settings, Provider.TWITTER, "https://app/cb", "st", code_challenge="ch")
    params = parse_qs(urlparse(url).query)
    assert params["code_challenge"] == ["ch"]
    assert params["code_challenge_method"] == ["S256"]


def test_unconfigured_provider():
    settings = make_settings()
    settings.oauth.DISCORD_CLIENT_ID = None
    with pytest.raises(ConfigurationError):
        build_authorization_url(settings, Provider.DISCORD, "https://app/cb", "st")


def test_token_request_styles():
    headers, body = token_request(get_provider_spec(Provider.TWITTER), "id", "secret", {"grant_type": "x"})
    assert headers["Authorization"].startswith("Basic ")
    assert body == {"grant_type": "x", "client_id": "id"}

    headers, body = token_request(get_provider_spec(Provider.GITHUB), "id", "secret", {"grant_type": "x"})
    assert headers["Accept"] == "application/json"
    assert "Authorization" not in headers
    assert body["client_secret"] == "secret"
