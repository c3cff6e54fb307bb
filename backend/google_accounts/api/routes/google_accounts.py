"""
Admin API for linking stores to Google accounts.

SECURITY:
- Responses never include tokens, plaintext or encrypted
- OAuth callback failures surface only a coarse reason code
  (invalid_state, no_refresh_token, no_channel, config_error, oauth_failed)
- All mutations are audit-logged by the lifecycle manager
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import RedirectResponse

from google_accounts.api.dependencies import (
    get_credential_services,
    get_lifecycle_manager,
)
from google_accounts.api.schemas.google_accounts import (
    AuthUrlRequest,
    AuthUrlResponse,
    ChannelResponse,
    CredentialListResponse,
    CredentialResponse,
    OAuthCallbackRequest,
    ScanReportResponse,
    TokenValidationResponse,
    UpdateStatusRequest,
)
from google_accounts.credentials.errors import (
    CALLBACK_OAUTH_FAILED,
    CredentialError,
    classify_callback_error,
)
from google_accounts.credentials.lifecycle import CredentialLifecycleManager
from google_accounts.services import CredentialServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/google-accounts", tags=["google-accounts"])


@router.post(
    "/auth-url",
    response_model=AuthUrlResponse,
    summary="Start linking a Google account",
    responses={
        404: {"description": "Store not found"},
        409: {"description": "Store already has a linked Google account"},
        503: {"description": "Google OAuth client not configured"},
    },
)
def create_auth_url(
    body: AuthUrlRequest,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    auth_url = manager.initiate_auth(body.store_id)
    return AuthUrlResponse(auth_url=auth_url)


@router.post(
    "/oauth-callback",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Complete the Google authorization",
    description="On failure the error details carry a reason code for the admin UI.",
)
async def complete_oauth_callback(
    body: OAuthCallbackRequest,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    try:
        await manager.complete_auth(body.code, body.state)
    except CredentialError as e:
        e.details = {**e.details, "reason": e.callback_reason}
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/oauth-callback",
    status_code=status.HTTP_303_SEE_OTHER,
    summary="Google redirect target",
    description="Completes the authorization and redirects back to the admin UI.",
)
async def oauth_redirect_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    services: CredentialServices = Depends(get_credential_services),
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Handle Google's browser redirect.

    Always answers with a redirect: ?status=success, or
    ?status=error&reason=<reason code>.
    """
    if error or not code or not state:
        # User denied consent or Google returned an error
        logger.info(
            "OAuth callback without authorization code",
            extra={"provider_error": error},
        )
        return _callback_redirect(services, reason=CALLBACK_OAUTH_FAILED)

    try:
        await manager.complete_auth(code, state)
    except Exception as e:
        reason = classify_callback_error(e)
        if not isinstance(e, CredentialError):
            logger.exception("Unexpected OAuth callback failure")
        return _callback_redirect(services, reason=reason)

    return _callback_redirect(services)


def _callback_redirect(services: CredentialServices, reason: Optional[str] = None) -> RedirectResponse:
    base_url = services.config.success_redirect_url or "/"
    params = {"status": "success"} if reason is None else {"status": "error", "reason": reason}
    separator = "&" if "?" in base_url else "?"
    return RedirectResponse(
        url=f"{base_url}{separator}{urlencode(params)}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get(
    "",
    response_model=CredentialListResponse,
    summary="List linked Google accounts",
)
def list_google_accounts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    return CredentialListResponse.from_page(manager.list_credentials(page=page, limit=limit))


@router.get(
    "/store/{store_id}",
    response_model=CredentialResponse,
    summary="Get a store's linked Google account",
    responses={404: {"description": "No linked account"}},
)
def get_google_account(
    store_id: str,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    return CredentialResponse.from_record(manager.get_credential(store_id))


@router.post(
    "/store/{store_id}/refresh-token",
    response_model=CredentialResponse,
    summary="Refresh a store's access token now",
    responses={
        404: {"description": "No linked account"},
        409: {"description": "Credential revoked or refreshed concurrently"},
        502: {"description": "Google rejected the refresh"},
    },
)
async def refresh_google_token(
    store_id: str,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    record = await manager.refresh_one(store_id)
    return CredentialResponse.from_record(record)


@router.put(
    "/store/{store_id}/status",
    response_model=CredentialResponse,
    summary="Change a credential's status",
    responses={
        400: {"description": "Unknown status or missing reason"},
        404: {"description": "No linked account"},
        409: {"description": "Transition not allowed"},
    },
)
def update_google_account_status(
    store_id: str,
    body: UpdateStatusRequest,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    record = manager.update_status(store_id, body.status, body.reason)
    return CredentialResponse.from_record(record)


@router.delete(
    "/store/{store_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unlink a store's Google account",
)
def delete_google_account(
    store_id: str,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    manager.delete(store_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/store/{store_id}/sync-channel",
    response_model=ChannelResponse,
    summary="Re-read the linked YouTube channel",
)
async def sync_youtube_channel(
    store_id: str,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    channel = await manager.resync_channel(store_id)
    return ChannelResponse.from_record(channel)


@router.get(
    "/store/{store_id}/validate",
    response_model=TokenValidationResponse,
    summary="Check whether Google still accepts the stored access token",
)
async def validate_google_token(
    store_id: str,
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    valid = await manager.validate_credential(store_id)
    return TokenValidationResponse(store_id=store_id, valid=valid)


@router.post(
    "/check-expired-tokens",
    response_model=ScanReportResponse,
    summary="Run the token refresh scan now",
)
async def check_expired_tokens(
    manager: CredentialLifecycleManager = Depends(get_lifecycle_manager),
):
    report = await manager.scan_and_refresh()
    return ScanReportResponse.from_report(report)
