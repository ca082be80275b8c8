from __future__ import annotations

import time
from typing import Dict, Optional, Tuple

from pydantic import Field

from activity_sync.core.errors import StoreError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import CamelModel, SyncResult, SyncSummary
from activity_sync.core.observability import increment_metric, observe_latency
from activity_sync.core.security import TokenCipher
from activity_sync.core.store import ConnectionStore
from activity_sync.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)


class SyncRunReport(CamelModel):
    success: bool = Field(True, description="False only when the run itself failed")
    message: Optional[str] = Field(default=None, description="Set when there was nothing to sync")
    summary: Optional[SyncSummary] = Field(default=None, description="Per-run counters")
    duration: int = Field(0, description="Wall time of the run in milliseconds")


class ActivitySyncService:
    """One scheduled sync run: load connections, orchestrate, stage activities, persist refreshed tokens."""

    def __init__(self, store: ConnectionStore, orchestrator: SyncOrchestrator, cipher: TokenCipher):
        self.store = store
        self.orchestrator = orchestrator
        self.cipher = cipher

    def _persist_tokens(self, result: SyncResult) -> None:
        tokens = result.new_tokens
        if tokens is None:
            return
        try:
            self.store.update_connection_tokens(
                result.connection_id,
                self.cipher.encrypt_safe(tokens.access_token),
                self.cipher.encrypt_safe(tokens.refresh_token) if tokens.refresh_token else None,
                tokens.expires_at,
            )
        except StoreError as ex:
            logger.error("token_update_failed", extra={"connection_id": result.connection_id, "error": str(ex)})

    def _stage(self, result: SyncResult) -> Tuple[int, int]:
        try:
            return self.store.insert_pending_activities(result.user_id, result.activities)
        except StoreError as ex:
            logger.error("pending_insert_failed", extra={"connection_id": result.connection_id, "error": str(ex)})
            return 0, len(result.activities)

    # PUBLIC_INTERFACE
    async def run(self) -> SyncRunReport:
        """Run one batch. Store failures while listing connections propagate as StoreError."""
        start = time.perf_counter()
        increment_metric("sync_runs_total", 1.0)

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        connections = self.store.list_syncable_connections()
        if not connections:
            return SyncRunReport(success=True, message="No connections to sync", duration=elapsed_ms())

        results = await self.orchestrator.sync_all_connections(connections)
        summary = SyncSummary(total=len(results))
        for result in results:
            if result.success:
                summary.successful += 1
                summary.activities_found += len(result.activities)
                inserted, skipped = self._stage(result)
                summary.activities_inserted += inserted
                summary.activities_skipped += skipped
            else:
                summary.failed += 1

            if result.token_refreshed and result.new_tokens:
                summary.tokens_refreshed += 1
                self._persist_tokens(result)

        duration = elapsed_ms()
        increment_metric("sync_connections_total", float(summary.total))
        increment_metric("sync_connections_failed_total", float(summary.failed))
        increment_metric("activities_found_total", float(summary.activities_found))
        increment_metric("activities_inserted_total", float(summary.activities_inserted))
        observe_latency("sync_latency_ms_sum", float(duration))
        logger.info("sync_run_complete", extra={"summary": summary.model_dump(by_alias=True), "duration_ms": duration})
        return SyncRunReport(success=True, summary=summary, duration=duration)

    # PUBLIC_INTERFACE
    def provider_counts(self) -> Dict[str, int]:
        """Syncable connections per provider (github, twitter, linkedin)."""
        return self.store.count_syncable_connections_by_provider()
