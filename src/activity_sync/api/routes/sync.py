from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from activity_sync.api.api_models import ErrorResponse, SyncHealthResponse
from activity_sync.api.deps import (
    SyncServiceFactory,
    TokenRefreshServiceFactory,
    get_sync_service_factory,
    get_token_refresh_service_factory,
    require_sync_api_key,
)
from activity_sync.core.logging import get_logger
from activity_sync.core.store import SYNC_PROVIDER_NAMES
from activity_sync.sync.service import SyncRunReport
from activity_sync.sync.token_refresh import TokenRefreshReport

logger = get_logger(__name__)
router = APIRouter(prefix="/api/sync", tags=["Sync"], dependencies=[Depends(require_sync_api_key)])


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


# PUBLIC_INTERFACE
@router.post(
    "/activities",
    summary="Run activity sync",
    description="Scheduled trigger: sync every connected GitHub, Twitter and LinkedIn account and stage new activities.",
    response_model=SyncRunReport,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={401: {"model": ErrorResponse}, 500: {"description": "Run failed"}},
)
async def run_sync(service_factory: SyncServiceFactory = Depends(get_sync_service_factory)):
    """Run one sync batch and report the summary."""
    start = time.perf_counter()
    try:
        return await service_factory().run()
    except Exception as ex:
        logger.exception("sync_run_failed")
        return JSONResponse(
            {"success": False, "error": str(ex) or "Unknown error", "duration": _elapsed_ms(start)},
            status_code=500,
        )


# PUBLIC_INTERFACE
@router.get(
    "/activities",
    summary="Sync health",
    description="Counts of syncable connections per provider.",
    response_model=SyncHealthResponse,
    response_model_by_alias=True,
    responses={401: {"model": ErrorResponse}, 500: {"description": "Store unavailable"}},
)
def sync_health(service_factory: SyncServiceFactory = Depends(get_sync_service_factory)):
    """Report how many connections each provider has."""
    try:
        counts = service_factory().provider_counts()
    except Exception as ex:
        logger.exception("sync_health_failed")
        return JSONResponse({"status": "unhealthy", "error": str(ex) or "Unknown error"}, status_code=500)
    providers = {name: int(counts.get(name, 0)) for name in SYNC_PROVIDER_NAMES}
    return SyncHealthResponse(status="healthy", providers=providers, total_connections=sum(providers.values()))


# PUBLIC_INTERFACE
@router.post(
    "/tokens",
    summary="Refresh expiring tokens",
    description="Scheduled trigger: renew access tokens of every provider that expire within the refresh window.",
    response_model=TokenRefreshReport,
    response_model_by_alias=True,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def refresh_tokens(service_factory: TokenRefreshServiceFactory = Depends(get_token_refresh_service_factory)):
    """Run the proactive token refresh and report the counts."""
    try:
        return await service_factory().run()
    except Exception as ex:
        logger.exception("token_refresh_run_failed")
        return JSONResponse({"error": str(ex) or "Unknown error"}, status_code=500)
