from __future__ import annotations

from typing import Callable, Optional

import httpx
from fastapi import Depends, Request
from pymongo.errors import PyMongoError

from activity_sync.connectors.registry import default_registry
from activity_sync.core.db import ensure_indexes, get_db
from activity_sync.core.errors import StoreError, UnauthorizedError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import FetcherConfig
from activity_sync.core.observability import mask_secret_value
from activity_sync.core.security import TokenCipher, constant_time_equals
from activity_sync.core.settings import Settings
from activity_sync.core.state import OAuthStateCodec
from activity_sync.core.store import ConnectionStore, MongoConnectionStore
from activity_sync.oauth.callback import OAuthCallbackHandler
from activity_sync.oauth.refresh import TokenRefresher
from activity_sync.oauth.revoke import TokenRevoker
from activity_sync.sync.orchestrator import SyncOrchestrator
from activity_sync.sync.service import ActivitySyncService
from activity_sync.sync.token_refresh import TokenRefreshService

logger = get_logger(__name__)

CallbackHandlerFactory = Callable[[], OAuthCallbackHandler]
SyncServiceFactory = Callable[[], ActivitySyncService]
TokenRefreshServiceFactory = Callable[[], TokenRefreshService]


# PUBLIC_INTERFACE
def get_app_settings(request: Request) -> Settings:
    """Settings bound to the running app by create_app."""
    return request.app.state.settings


# PUBLIC_INTERFACE
def get_store(request: Request) -> ConnectionStore:
    """Connection store; Mongo-backed unless the app state already carries one. Raises StoreError."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        try:
            db = get_db(request.app.state.settings)
            ensure_indexes(db)
        except PyMongoError as ex:
            raise StoreError(f"Database unavailable: {ex}") from ex
        store = MongoConnectionStore(db)
        request.app.state.store = store
    return store


def get_transport(request: Request) -> Optional[httpx.AsyncBaseTransport]:
    """Outbound HTTP transport override (None uses httpx defaults)."""
    return getattr(request.app.state, "transport", None)


def get_cipher(settings: Settings = Depends(get_app_settings)) -> TokenCipher:
    return TokenCipher(
        settings.security.TOKEN_ENCRYPTION_KEY,
        signing_secret=settings.security.OAUTH_STATE_SECRET,
        strict=settings.is_production,
    )


def get_state_codec(settings: Settings = Depends(get_app_settings)) -> OAuthStateCodec:
    return OAuthStateCodec(settings.security.OAUTH_STATE_SECRET)


# PUBLIC_INTERFACE
def get_current_user_id(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    """Caller id injected by the upstream auth layer; 401 when absent."""
    user_id = (request.headers.get(settings.api.USER_HEADER_NAME) or "").strip()
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return user_id


# PUBLIC_INTERFACE
def require_sync_api_key(request: Request, settings: Settings = Depends(get_app_settings)) -> None:
    """Bearer check for the scheduled sync endpoint. An unset SYNC_API_KEY rejects every call."""
    header = request.headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        raise UnauthorizedError("Unauthorized")
    expected = settings.security.SYNC_API_KEY
    if not expected:
        logger.warning("sync_api_key_not_configured")
        raise UnauthorizedError("Unauthorized")
    presented = header[len("Bearer "):]
    if not constant_time_equals(presented, expected):
        logger.warning("sync_api_key_rejected", extra={"presented": mask_secret_value(presented)})
        raise UnauthorizedError("Unauthorized")


def get_callback_handler_factory(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    codec: OAuthStateCodec = Depends(get_state_codec),
    cipher: TokenCipher = Depends(get_cipher),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> CallbackHandlerFactory:
    """Deferred so the callback can turn a store failure into an error redirect."""

    def build() -> OAuthCallbackHandler:
        return OAuthCallbackHandler(settings, codec, cipher, get_store(request), transport=transport)

    return build


def get_revoker(
    settings: Settings = Depends(get_app_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> TokenRevoker:
    return TokenRevoker(settings, transport=transport)


def _refresher(settings: Settings, transport: Optional[httpx.AsyncBaseTransport]) -> TokenRefresher:
    return TokenRefresher(settings, transport=transport, timeout=settings.sync.HTTP_TIMEOUT_SECONDS)


def get_sync_service_factory(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    cipher: TokenCipher = Depends(get_cipher),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> SyncServiceFactory:
    """Deferred so store failures surface inside the sync routes' error handling."""

    def build() -> ActivitySyncService:
        timeout = settings.sync.HTTP_TIMEOUT_SECONDS
        orchestrator = SyncOrchestrator(
            fetchers=default_registry(timeout=timeout, transport=transport),
            refresh_fn=_refresher(settings, transport).refresh_if_needed,
            decrypt_fn=cipher.decrypt_safe,
            fetcher_config=FetcherConfig(
                max_results=settings.sync.SYNC_MAX_RESULTS,
                lookback_hours=settings.sync.SYNC_LOOKBACK_HOURS,
            ),
        )
        return ActivitySyncService(get_store(request), orchestrator, cipher)

    return build


def get_token_refresh_service_factory(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    cipher: TokenCipher = Depends(get_cipher),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> TokenRefreshServiceFactory:
    def build() -> TokenRefreshService:
        return TokenRefreshService(
            get_store(request),
            _refresher(settings, transport),
            cipher,
            window_hours=settings.sync.TOKEN_REFRESH_WINDOW_HOURS,
        )

    return build
