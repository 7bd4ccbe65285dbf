"""
OAuth credential API routes.

Endpoints:
- GET    /api/oauth/{provider}/authorize  start the authorization handshake
- GET    /api/oauth/{provider}/callback   provider redirect target
- GET    /api/oauth/{provider}/status     connection status
- DELETE /api/oauth/{provider}            revoke and delete the stored grant

SECURITY:
- Token values are never returned; responses carry scope and expiry only
- The callback trusts nothing but the one-time state for user identity
- Credential errors are mapped to the standard error shape by
  src.platform.errors
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from src.api.dependencies.oauth import get_lifecycle_manager
from src.api.schemas.oauth import (
    AuthorizationCallbackResponse,
    AuthorizationStartResponse,
    CredentialStatusResponse,
    RevokeResponse,
)
from src.credentials.lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/oauth", tags=["oauth"])


@router.get(
    "/{provider}/authorize",
    response_model=AuthorizationStartResponse,
)
async def start_authorization(
    provider: str,
    user_id: str = Query(..., min_length=1),
    scopes: List[str] = Query(default=[]),
    redirect: bool = Query(default=False),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Begin authorization for a user.

    Scopes outside the provider allow-list are dropped. With redirect=true
    the user agent is sent straight to the provider instead of receiving
    the URL as JSON.
    """
    request = manager.begin_authorization(user_id, scopes, provider=provider)

    if redirect:
        return RedirectResponse(request.authorization_url, status_code=302)

    return AuthorizationStartResponse(
        authorization_url=request.authorization_url,
        state=request.state,
    )


@router.get(
    "/{provider}/callback",
    response_model=AuthorizationCallbackResponse,
)
async def authorization_callback(
    provider: str,
    code: str = Query(default=""),
    state: str = Query(default=""),
    error: str = Query(default=""),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Provider redirect target.

    A provider `error` short-circuits before any code exchange.
    """
    metadata = await manager.complete_authorization(
        code=code or None,
        state=state or None,
        error=error or None,
        provider=provider,
    )

    logger.info(
        "Authorization completed",
        extra={
            "user_id": metadata.user_id,
            "provider": metadata.provider,
            "scope_count": len(metadata.scope),
        },
    )

    return AuthorizationCallbackResponse(
        user_id=metadata.user_id,
        provider=metadata.provider,
        scope=metadata.scope,
        expires_at=metadata.expires_at,
        account_email=metadata.account_email,
    )


@router.get(
    "/{provider}/status",
    response_model=CredentialStatusResponse,
)
async def credential_status(
    provider: str,
    user_id: str = Query(..., min_length=1),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
):
    """Report whether the user has a grant and whether its access token is still valid."""
    status = manager.get_status(user_id, provider)
    return CredentialStatusResponse(
        connected=status.connected,
        is_valid=status.is_valid,
        expires_at=status.expires_at,
        scope=status.scope,
    )


@router.delete(
    "/{provider}",
    response_model=RevokeResponse,
)
async def revoke_credential(
    provider: str,
    user_id: str = Query(..., min_length=1),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
):
    """Revoke the user's grant. Idempotent: always reports success."""
    deleted = await manager.revoke(user_id, provider)
    return RevokeResponse(deleted=deleted)
