from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import Field

from activity_sync.core.errors import StoreError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import CamelModel, Connection, Provider
from activity_sync.core.observability import increment_metric
from activity_sync.core.security import TokenCipher
from activity_sync.core.store import ConnectionStore
from activity_sync.oauth.refresh import TokenRefresher, supports_refresh

logger = get_logger(__name__)

DEFAULT_WINDOW_HOURS = 24


class TokenRefreshReport(CamelModel):
    refreshed: int = Field(0, description="Connections whose tokens were renewed and stored")
    failed: int = Field(0, description="Connections whose refresh or write-back failed")
    skipped: int = Field(0, description="Connections on providers without a refresh grant")
    errors: List[str] = Field(default_factory=list, description="'{provider}:{user_id} - {reason}' per failure")
    duration: int = Field(0, description="Wall time of the run in milliseconds")


class TokenRefreshService:
    """Renews every token close to expiry, across all providers (Discord included), ahead of use."""

    def __init__(
        self,
        store: ConnectionStore,
        refresher: TokenRefresher,
        cipher: TokenCipher,
        window_hours: int = DEFAULT_WINDOW_HOURS,
    ):
        self.store = store
        self.refresher = refresher
        self.cipher = cipher
        self.window_hours = window_hours

    async def _refresh_one(self, conn: Connection, provider: Provider) -> Optional[str]:
        """Returns the failure reason, or None once the new tokens are stored."""
        result = await self.refresher.refresh_token(provider, self.cipher.decrypt_safe(conn.refresh_token or ""))
        if not result.success or result.tokens is None:
            return result.error or "No tokens returned"
        tokens = result.tokens
        try:
            self.store.update_connection_tokens(
                conn.id,
                self.cipher.encrypt_safe(tokens.access_token),
                self.cipher.encrypt_safe(tokens.refresh_token) if tokens.refresh_token else None,
                tokens.expires_at,
            )
        except StoreError as ex:
            return str(ex)
        return None

    # PUBLIC_INTERFACE
    async def run(self, now: Optional[datetime] = None) -> TokenRefreshReport:
        """Refresh connections expiring inside the window. Listing failures propagate as StoreError."""
        start = time.perf_counter()
        increment_metric("token_refresh_runs_total")
        threshold = (now or datetime.now(timezone.utc)) + timedelta(hours=self.window_hours)
        connections = self.store.list_expiring_connections(threshold)
        logger.info("token_refresh_candidates", extra={"count": len(connections)})

        report = TokenRefreshReport()
        for conn in connections:
            provider = Provider.parse(conn.provider)
            if provider is None or not supports_refresh(provider):
                report.skipped += 1
                continue
            try:
                error = await self._refresh_one(conn, provider)
            except Exception as ex:
                error = str(ex) or type(ex).__name__
            if error is None:
                report.refreshed += 1
                logger.info("token_refresh_stored", extra={"provider": provider.value, "connection_id": conn.id})
            else:
                report.failed += 1
                report.errors.append(f"{provider.value}:{conn.user_id} - {error}")
                logger.warning("token_refresh_connection_failed", extra={"provider": provider.value, "error": error})

        report.duration = int((time.perf_counter() - start) * 1000)
        logger.info("token_refresh_complete", extra={"refreshed": report.refreshed, "failed": report.failed})
        return report
