"""
Shared fixtures: in-memory connection store, settings and a scripted httpx transport.
"""
import base64
import json
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest

from activity_sync.core.errors import StoreError
from activity_sync.core.models import SYNC_PROVIDERS, Connection, ProcessedActivity
from activity_sync.core.observability import reset_metrics
from activity_sync.core.security import TokenCipher
from activity_sync.core.settings import (
    APISettings,
    OAuthSettings,
    RuntimeSettings,
    SecuritySettings,
    Settings,
)
from activity_sync.core.state import OAuthStateCodec
from activity_sync.core.store import ConnectionStore, split_new_activities

TEST_KEY = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode("ascii")
STATE_SECRET = "state-secret-for-tests"
SYNC_KEY = "sync-key-for-tests"
APP_URL = "https://app.example.com"


class InMemoryStore(ConnectionStore):
    """ConnectionStore kept in dicts; flags make individual operations fail."""

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.pending: List[Dict] = []
        self.token_updates: List[Tuple[str, str, Optional[str], Optional[datetime]]] = []
        self.fail_list = False
        self.fail_upsert = False
        self.fail_insert = False
        self.fail_update = False
        self.fail_delete = False

    def add(self, **fields) -> Connection:
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("provider_user_id", "pid")
        conn = Connection(**fields)
        self.connections[conn.id] = conn
        return conn

    def list_syncable_connections(self) -> List[Connection]:
        if self.fail_list:
            raise StoreError("Database error: unavailable")
        names = {p.value for p in SYNC_PROVIDERS}
        return [c for c in self.connections.values() if c.provider in names and c.access_token]

    def list_expiring_connections(self, before: datetime) -> List[Connection]:
        if self.fail_list:
            raise StoreError("Failed to fetch connections: unavailable")
        return [
            c
            for c in self.connections.values()
            if c.refresh_token and c.token_expires_at is not None and c.token_expires_at < before
        ]

    def count_syncable_connections_by_provider(self) -> Dict[str, int]:
        counts = {p.value: 0 for p in SYNC_PROVIDERS}
        for conn in self.list_syncable_connections():
            counts[conn.provider] += 1
        return counts

    def find_connection(self, user_id: str, provider: str) -> Optional[Connection]:
        for conn in self.connections.values():
            if conn.user_id == user_id and conn.provider == provider:
                return conn
        return None

    def upsert_connection(self, user_id, provider, provider_user_id, provider_username, access_token, refresh_token, token_expires_at):
        if self.fail_upsert:
            raise StoreError("Failed to save connection: unavailable")
        existing = self.find_connection(user_id, provider)
        conn = Connection(
            id=existing.id if existing else str(uuid.uuid4()),
            user_id=user_id,
            provider=provider,
            provider_user_id=provider_user_id,
            provider_username=provider_username,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            updated_at=datetime.now(timezone.utc),
        )
        self.connections[conn.id] = conn
        return conn

    def update_connection_tokens(self, connection_id, access_token, refresh_token, token_expires_at):
        if self.fail_update:
            raise StoreError("Failed to update tokens: unavailable")
        self.token_updates.append((connection_id, access_token, refresh_token, token_expires_at))
        conn = self.connections[connection_id]
        self.connections[connection_id] = conn.model_copy(
            update={"access_token": access_token, "refresh_token": refresh_token, "token_expires_at": token_expires_at}
        )

    def delete_connection(self, connection_id: str) -> None:
        if self.fail_delete:
            raise StoreError("Failed to delete connection: unavailable")
        self.connections.pop(connection_id, None)

    def insert_pending_activities(self, user_id: str, activities: List[ProcessedActivity]):
        if self.fail_insert:
            raise StoreError("Failed to insert pending activities: unavailable")
        existing = {row["provider_activity_id"] for row in self.pending if row["user_id"] == user_id}
        fresh = split_new_activities(activities, existing)
        for activity in fresh:
            self.pending.append({"user_id": user_id, "provider_activity_id": activity.provider_activity_id})
        return len(fresh), len(activities) - len(fresh)


Handler = Callable[[httpx.Request], httpx.Response]


class ScriptedTransport:
    """Route requests by (METHOD, host+path) to handlers and record every request."""

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Handler]] = None):
        self.routes: Dict[Tuple[str, str], Handler] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, handler: Handler) -> "ScriptedTransport":
        self.routes[(method.upper(), url)] = handler
        return self

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.host}{request.url.path}")
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(599, text=f"no route for {key}")
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and f"{r.url.host}{r.url.path}" == url]


def json_response(payload, status: int = 200, headers: Optional[Dict[str, str]] = None) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload, headers=headers)

    return handler


def form_of(request: httpx.Request) -> Dict[str, str]:
    return dict(parse_qsl(request.content.decode("utf-8")))


def json_of(request: httpx.Request):
    return json.loads(request.content.decode("utf-8"))


def make_settings(**security_overrides) -> Settings:
    security = {
        "TOKEN_ENCRYPTION_KEY": TEST_KEY,
        "OAUTH_STATE_SECRET": STATE_SECRET,
        "SYNC_API_KEY": SYNC_KEY,
    }
    security.update(security_overrides)
    oauth = OAuthSettings(
        DISCORD_CLIENT_ID="discord-id",
        DISCORD_CLIENT_SECRET="discord-secret",
        LINKEDIN_CLIENT_ID="linkedin-id",
        LINKEDIN_CLIENT_SECRET="linkedin-secret",
        GITHUB_CLIENT_ID="github-id",
        GITHUB_CLIENT_SECRET="github-secret",
        TWITTER_CLIENT_ID="twitter-id",
        TWITTER_CLIENT_SECRET="twitter-secret",
    )
    return Settings(
        security=SecuritySettings(**security),
        oauth=oauth,
        api=APISettings(APP_URL=APP_URL),
        runtime=RuntimeSettings(ENV="test"),
    )


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_KEY, signing_secret=STATE_SECRET)


@pytest.fixture
def codec() -> OAuthStateCodec:
    return OAuthStateCodec(STATE_SECRET)


@pytest.fixture
def scripted() -> ScriptedTransport:
    return ScriptedTransport()
