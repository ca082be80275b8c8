"""
Proactive refresh of tokens nearing expiry.
"""
from datetime import datetime, timedelta, timezone

import pytest

from activity_sync.core.errors import StoreError
from activity_sync.core.observability import metrics_snapshot
from activity_sync.oauth.refresh import TokenRefresher
from activity_sync.sync.token_refresh import TokenRefreshService

from conftest import form_of, json_response

NOW = datetime.now(timezone.utc)
DISCORD_TOKEN = "discord.com/api/oauth2/token"
TWITTER_TOKEN = "api.twitter.com/2/oauth2/token"


@pytest.fixture
def service(store, scripted, settings, cipher):
    return TokenRefreshService(store, TokenRefresher(settings, transport=scripted.transport), cipher)


def expiring(store, cipher, provider, user_id="u1", hours=1.0):
    return store.add(
        user_id=user_id,
        provider=provider,
        access_token=cipher.encrypt(f"{provider}-at"),
        refresh_token=cipher.encrypt(f"{provider}-rt"),
        token_expires_at=NOW + timedelta(hours=hours),
    )


@pytest.mark.asyncio
async def test_discord_token_is_renewed_and_stored_encrypted(service, store, scripted, cipher):
    scripted.on(
        "POST",
        DISCORD_TOKEN,
        json_response({"access_token": "new-at", "refresh_token": "new-rt", "expires_in": 604800}),
    )
    conn = expiring(store, cipher, "discord")

    report = await service.run(now=NOW)

    assert (report.refreshed, report.failed, report.skipped, report.errors) == (1, 0, 0, [])
    assert form_of(scripted.calls("POST", DISCORD_TOKEN)[0])["refresh_token"] == "discord-rt"
    connection_id, access, refresh, expires = store.token_updates[0]
    assert connection_id == conn.id
    assert access != "new-at"
    assert cipher.decrypt(access) == "new-at"
    assert cipher.decrypt(refresh) == "new-rt"
    assert expires > NOW + timedelta(days=6)
    assert metrics_snapshot()["token_refresh_runs_total"] == 1.0


@pytest.mark.asyncio
async def test_window_and_provider_filtering(service, store, scripted, cipher):
    expiring(store, cipher, "github")
    expiring(store, cipher, "discord", hours=48)
    store.add(user_id="u2", provider="linkedin", access_token="at", refresh_token=None, token_expires_at=NOW)

    report = await service.run(now=NOW)

    assert (report.refreshed, report.failed, report.skipped) == (0, 0, 1)
    assert scripted.requests == []
    assert store.token_updates == []


@pytest.mark.asyncio
async def test_failures_are_reported_per_connection(service, store, scripted, cipher):
    scripted.on("POST", TWITTER_TOKEN, json_response({"error": "invalid_grant"}, status=400))
    scripted.on("POST", DISCORD_TOKEN, json_response({"access_token": "new-at", "expires_in": 3600}))
    expiring(store, cipher, "twitter", user_id="alice")
    expiring(store, cipher, "discord", user_id="bob")

    report = await service.run(now=NOW)

    assert report.refreshed == 1
    assert report.failed == 1
    assert report.errors == ["twitter:alice - Refresh token is invalid or expired for twitter"]
    refresh = store.token_updates[0][2]
    assert cipher.decrypt(refresh) == "discord-rt"


@pytest.mark.asyncio
async def test_write_back_failure_counts_as_failed(service, store, scripted, cipher):
    scripted.on("POST", DISCORD_TOKEN, json_response({"access_token": "new-at", "expires_in": 3600}))
    expiring(store, cipher, "discord")
    store.fail_update = True

    report = await service.run(now=NOW)

    assert (report.refreshed, report.failed) == (0, 1)
    assert report.errors == ["discord:u1 - Failed to update tokens: unavailable"]


@pytest.mark.asyncio
async def test_listing_failure_propagates(service, store):
    store.fail_list = True
    with pytest.raises(StoreError):
        await service.run(now=NOW)

