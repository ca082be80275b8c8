from __future__ import annotations

from typing import Awaitable, Callable, List, Optional

from activity_sync.connectors.registry import FetcherRegistry
from activity_sync.core.logging import get_logger
from activity_sync.core.models import (
    SYNC_PROVIDERS,
    Connection,
    FetcherConfig,
    Provider,
    RefreshResult,
    SyncResult,
    TokenPair,
)

logger = get_logger(__name__)

RefreshFn = Callable[[Provider, TokenPair], Awaitable[RefreshResult]]
DecryptFn = Callable[[str], str]


def _failure(conn: Connection, error: str, **extra) -> SyncResult:
    return SyncResult(
        connection_id=conn.id,
        user_id=conn.user_id,
        provider=conn.provider,
        success=False,
        activities=[],
        error=error,
        **extra,
    )


class SyncOrchestrator:
    """Runs decrypt -> refresh -> fetch -> map for each stored connection."""

    def __init__(
        self,
        fetchers: FetcherRegistry,
        refresh_fn: RefreshFn,
        decrypt_fn: DecryptFn,
        fetcher_config: Optional[FetcherConfig] = None,
    ):
        self.fetchers = fetchers
        self.refresh_fn = refresh_fn
        self.decrypt_fn = decrypt_fn
        self.fetcher_config = fetcher_config or FetcherConfig()

    # PUBLIC_INTERFACE
    async def sync_connection(self, conn: Connection) -> SyncResult:
        """Sync a single connection. Never raises."""
        if not conn.access_token:
            return _failure(conn, "No access token available for this connection")

        provider = Provider.parse(conn.provider)
        if provider is None or provider not in SYNC_PROVIDERS:
            return _failure(conn, f"Provider {conn.provider} is not supported for activity sync")
        fetcher = self.fetchers.get(provider)
        if fetcher is None:
            return _failure(conn, f"No fetcher configured for provider {conn.provider}")

        try:
            original_access = self.decrypt_fn(conn.access_token)
            tokens = TokenPair(
                access_token=original_access,
                refresh_token=self.decrypt_fn(conn.refresh_token) if conn.refresh_token else None,
                expires_at=conn.token_expires_at,
            )

            refreshed = await self.refresh_fn(provider, tokens)
            if not refreshed.success or refreshed.tokens is None:
                return _failure(conn, refreshed.error or "Failed to refresh token")

            current = refreshed.tokens
            token_refreshed = current.access_token != original_access
            new_tokens = current if token_refreshed else None

            result = await fetcher.fetch_activities(
                current.access_token,
                fetcher.feed_identity(conn.provider_user_id, conn.provider_username),
                self.fetcher_config,
            )
            if not result.success:
                # a successful refresh must still be persisted
                return _failure(
                    conn,
                    result.error or "Failed to fetch activities",
                    token_refreshed=token_refreshed,
                    new_tokens=new_tokens,
                )

            activities = [fetcher.map_to_processed_activity(raw) for raw in result.activities]
            return SyncResult(
                connection_id=conn.id,
                user_id=conn.user_id,
                provider=conn.provider,
                success=True,
                activities=activities,
                token_refreshed=token_refreshed,
                new_tokens=new_tokens,
            )
        except Exception as ex:
            logger.exception("sync_connection_error", extra={"connection_id": conn.id, "provider": conn.provider})
            return _failure(conn, str(ex) or "Unknown error")

    # PUBLIC_INTERFACE
    async def sync_all_connections(self, connections: List[Connection]) -> List[SyncResult]:
        """Sync connections one after another; the result list mirrors the input order."""
        results: List[SyncResult] = []
        for conn in connections:
            try:
                result = await self.sync_connection(conn)
            except Exception as ex:
                logger.exception("sync_connection_error", extra={"connection_id": conn.id})
                result = _failure(conn, str(ex) or "Unknown error")
            if result.success:
                logger.info(
                    "sync_connection_done",
                    extra={"connection_id": conn.id, "provider": conn.provider, "activities": len(result.activities)},
                )
            else:
                logger.warning(
                    "sync_connection_failed",
                    extra={"connection_id": conn.id, "provider": conn.provider, "error": result.error},
                )
            results.append(result)
        return results
