"""
FastAPI dependencies for the OAuth credential lifecycle.

The state store, cipher, provider client registry and refresh coordinator
are process-wide singletons: the in-memory state store and the per-key
refresh locks only work if every request sees the same instance. The
TokenLifecycleManager itself is built per request around the request's
database session.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from src.config.oauth import get_redis_url, get_state_backend, get_state_ttl_seconds
from src.credentials.encryption import CredentialCipher
from src.credentials.lifecycle import TokenLifecycleManager
from src.credentials.refresh import RefreshCoordinator
from src.credentials.state import build_state_store
from src.credentials.store import CredentialStore
from src.database.session import get_db_session
from src.integrations.oauth.client import ProviderClientRegistry

logger = logging.getLogger(__name__)

_state_store = None
_cipher: Optional[CredentialCipher] = None
_client_registry: Optional[ProviderClientRegistry] = None
_refresh_coordinator: Optional[RefreshCoordinator] = None


def get_state_store():
    """
    Module-level authorization state store singleton.

    Uses OAUTH_STATE_BACKEND (memory | redis) and OAUTH_STATE_TTL_SECONDS.
    """
    global _state_store
    if _state_store is None:
        backend = get_state_backend()
        _state_store = build_state_store(
            backend,
            ttl=timedelta(seconds=get_state_ttl_seconds()),
            redis_url=get_redis_url() if backend == "redis" else None,
        )
    return _state_store


def get_cipher() -> CredentialCipher:
    global _cipher
    if _cipher is None:
        _cipher = CredentialCipher()
    return _cipher


def get_client_registry() -> ProviderClientRegistry:
    global _client_registry
    if _client_registry is None:
        _client_registry = ProviderClientRegistry()
    return _client_registry


def get_refresh_coordinator() -> RefreshCoordinator:
    global _refresh_coordinator
    if _refresh_coordinator is None:
        _refresh_coordinator = RefreshCoordinator()
    return _refresh_coordinator


def get_lifecycle_manager(
    db_session: Session = Depends(get_db_session),
    state_store=Depends(get_state_store),
    cipher: CredentialCipher = Depends(get_cipher),
    clients: ProviderClientRegistry = Depends(get_client_registry),
    refresh_coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
) -> TokenLifecycleManager:
    """Request-scoped lifecycle manager over the shared collaborators."""
    return TokenLifecycleManager(
        store=CredentialStore(db_session),
        state_store=state_store,
        cipher=cipher,
        clients=clients,
        refresh_coordinator=refresh_coordinator,
    )


async def close_oauth_dependencies() -> None:
    """Release provider HTTP clients. Call on application shutdown."""
    global _client_registry
    if _client_registry is not None:
        await _client_registry.aclose()
        _client_registry = None
        logger.info("OAuth provider clients closed")
