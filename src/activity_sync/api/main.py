from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from activity_sync.api.api_models import HealthData, SuccessResponse
from activity_sync.api.response import error_body, ok
from activity_sync.api.routes import auth as auth_routes
from activity_sync.api.routes import sync as sync_routes
from activity_sync.core.errors import ConfigurationError, StoreError
from activity_sync.core.logging import configure_logging, get_logger
from activity_sync.core.observability import RequestContextMiddleware, metrics_snapshot
from activity_sync.core.settings import Settings, get_settings

logger = get_logger(__name__)

openapi_tags = [
    {"name": "Service", "description": "Health and metrics"},
    {"name": "Auth", "description": "OAuth connect, callback and disconnect"},
    {"name": "Sync", "description": "Scheduled activity sync"},
]


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(error_body(str(exc.detail)), status_code=exc.status_code, headers=exc.headers)


async def _config_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("configuration_error", extra={"error": str(exc)})
    return JSONResponse(error_body(str(exc)), status_code=500)


async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("store_unavailable", extra={"error": str(exc)})
    return JSONResponse(error_body("An unexpected error occurred. Please try again."), status_code=500)


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application. Configuration is validated once here."""
    settings = settings or get_settings()
    configure_logging(settings.runtime.LOG_LEVEL, settings.runtime.LOG_FORMAT)
    settings.assert_valid()

    app = FastAPI(
        title=settings.api.API_TITLE,
        description=settings.api.API_DESCRIPTION,
        version=settings.api.API_VERSION,
        openapi_tags=openapi_tags,
    )
    app.state.settings = settings
    app.state.store = None
    app.state.transport = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=settings.api.CORS_ALLOW_METHODS,
        allow_headers=settings.api.CORS_ALLOW_HEADERS,
    )
    app.add_middleware(RequestContextMiddleware, user_header_name=settings.api.USER_HEADER_NAME, logger=logger)

    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(ConfigurationError, _config_error_handler)
    app.add_exception_handler(StoreError, _store_error_handler)

    # PUBLIC_INTERFACE
    @app.get(
        "/",
        summary="Health Check",
        description="Service status and environment.",
        tags=["Service"],
        response_model=SuccessResponse[HealthData],  # type: ignore[type-arg]
    )
    def health_check():
        """Liveness check; also echoes ENV."""
        return ok({"message": "Healthy", "env": settings.runtime.ENV})

    # PUBLIC_INTERFACE
    @app.get(
        "/_metrics",
        summary="Process counters",
        description="Process-local counters for requests, sync runs, token refreshes and OAuth callbacks.",
        tags=["Service"],
        response_model=SuccessResponse[dict],  # type: ignore[type-arg]
    )
    def metrics():
        """Counters since process start."""
        return ok(metrics_snapshot())

    app.include_router(auth_routes.router)
    app.include_router(sync_routes.router)
    return app


app = create_app()
