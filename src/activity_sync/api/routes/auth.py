from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from activity_sync.api.api_models import DisconnectRequest, DisconnectResponse, ErrorResponse
from activity_sync.api.deps import (
    CallbackHandlerFactory,
    get_app_settings,
    get_callback_handler_factory,
    get_current_user_id,
    get_revoker,
    get_state_codec,
    get_cipher,
    get_store,
)
from activity_sync.api.response import error_body
from activity_sync.core.errors import BadRequestError, NotFoundError, ServerError, StoreError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import Provider
from activity_sync.core.security import TokenCipher, generate_pkce
from activity_sync.core.settings import Settings
from activity_sync.core.state import (
    PKCE_COOKIE_NAME,
    STATE_COOKIE_NAME,
    OAuthStateCodec,
    cookie_options,
    extract_csrf,
)
from activity_sync.core.store import ConnectionStore
from activity_sync.oauth.authorize import (
    DEFAULT_REDIRECT_PATH,
    build_authorization_url,
    callback_uri,
    safe_redirect_path,
)
from activity_sync.oauth.callback import ERROR_MESSAGES
from activity_sync.oauth.providers import get_provider_spec
from activity_sync.oauth.revoke import TokenRevoker

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _origin(request: Request, settings: Settings) -> str:
    return (settings.api.APP_URL or str(request.base_url)).rstrip("/")


def _error_redirect(origin: str, message: str) -> RedirectResponse:
    query = urlencode({"oauth": "error", "message": message})
    return RedirectResponse(f"{origin}{DEFAULT_REDIRECT_PATH}?{query}", status_code=302)


# PUBLIC_INTERFACE
@router.get(
    "/connect",
    summary="Start OAuth connect",
    description="Redirect the signed-in user to the provider consent screen with signed state (and PKCE for Twitter).",
    responses={
        302: {"description": "Redirect to provider"},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def connect(
    request: Request,
    provider: Optional[str] = Query(default=None, description="discord, linkedin, github or twitter"),
    redirect: Optional[str] = Query(default=None, description="Relative path to return to afterwards"),
    settings: Settings = Depends(get_app_settings),
    codec: OAuthStateCodec = Depends(get_state_codec),
):
    """Build the authorization URL and set the CSRF (and PKCE) cookies."""
    p = Provider.parse(provider)
    if p is None:
        raise BadRequestError("Invalid or missing provider")
    user_id = get_current_user_id(request, settings)

    if not settings.oauth.is_configured(p):
        raise ServerError(f"OAuth not configured for {p.value}")
    if not settings.security.OAUTH_STATE_SECRET:
        raise ServerError("OAuth state secret is not configured")

    origin = _origin(request, settings)
    pkce = generate_pkce() if get_provider_spec(p).requires_pkce else None
    state = codec.create_state(user_id, safe_redirect_path(redirect), p)
    url = build_authorization_url(
        settings, p, callback_uri(origin, p), state, code_challenge=pkce.challenge if pkce else None
    )

    response = RedirectResponse(url, status_code=302)
    options = cookie_options(settings.is_production)
    response.set_cookie(STATE_COOKIE_NAME, extract_csrf(state) or "", **options)
    if pkce is not None:
        response.set_cookie(PKCE_COOKIE_NAME, pkce.verifier, **options)
    logger.info("oauth_connect_started", extra={"provider": p.value})
    return response


# PUBLIC_INTERFACE
@router.get(
    "/callback/{provider}",
    summary="OAuth callback",
    description="Provider redirect target. Always answers 302 back to the app with oauth=success or oauth=error markers.",
    responses={302: {"description": "Redirect back to the application"}},
)
async def callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_app_settings),
    handler_factory: CallbackHandlerFactory = Depends(get_callback_handler_factory),
):
    """Complete the flow and clear the one-time cookies."""
    origin = _origin(request, settings)
    p = Provider.parse(provider)
    if p is None:
        response = _error_redirect(origin, "Invalid or missing provider")
    elif error:
        response = _error_redirect(origin, error)
    elif not code or not state:
        response = _error_redirect(origin, "Missing code or state")
    else:
        try:
            handler = handler_factory()
        except StoreError as ex:
            logger.error("oauth_callback_store_unavailable", extra={"provider": p.value, "error": str(ex)})
            response = _error_redirect(origin, ERROR_MESSAGES["database_error"])
        else:
            result = await handler.handle_callback(
                p,
                code,
                state,
                origin,
                csrf_cookie=request.cookies.get(STATE_COOKIE_NAME),
                pkce_verifier=request.cookies.get(PKCE_COOKIE_NAME),
            )
            response = RedirectResponse(result.redirect_url, status_code=302)

    response.delete_cookie(STATE_COOKIE_NAME, path="/")
    response.delete_cookie(PKCE_COOKIE_NAME, path="/")
    return response


# PUBLIC_INTERFACE
@router.post(
    "/disconnect",
    summary="Disconnect a provider",
    description="Revoke the provider tokens (best effort) and delete the stored connection.",
    response_model=DisconnectResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def disconnect(
    request: Request,
    body: Optional[DisconnectRequest] = Body(default=None),
    settings: Settings = Depends(get_app_settings),
    store: ConnectionStore = Depends(get_store),
    cipher: TokenCipher = Depends(get_cipher),
    revoker: TokenRevoker = Depends(get_revoker),
):
    """Remove the caller's connection for a provider."""
    p = Provider.parse(body.provider if body else None)
    if p is None:
        raise BadRequestError("Invalid or missing provider")
    user_id = get_current_user_id(request, settings)

    try:
        conn = store.find_connection(user_id, p.value)
    except StoreError as ex:
        logger.error("disconnect_lookup_failed", extra={"provider": p.value, "error": str(ex)})
        return JSONResponse(error_body("An unexpected error occurred. Please try again."), status_code=500)
    if conn is None:
        raise NotFoundError("Connection not found")

    access = cipher.decrypt_safe(conn.access_token) if conn.access_token else None
    refresh = cipher.decrypt_safe(conn.refresh_token) if conn.refresh_token else None
    revoked = await revoker.revoke_all_tokens(p, access, refresh)
    if not revoked.success:
        # deletion proceeds; the stored tokens are dropped either way
        logger.warning("token_revoke_incomplete", extra={"provider": p.value, "error": revoked.error})

    try:
        store.delete_connection(conn.id)
    except StoreError as ex:
        logger.error("disconnect_delete_failed", extra={"provider": p.value, "error": str(ex)})
        return JSONResponse(error_body("Failed to disconnect. Please try again."), status_code=500)

    return DisconnectResponse(
        success=True,
        message=f"Successfully disconnected {p.value}",
        token_revoked=revoked.success,
    )
