"""
Credentials module for the OAuth2 credential lifecycle.

This module provides:
- Scope allow-listing per provider
- One-time CSRF state for the authorization handshake
- AES-256-GCM encryption of stored tokens with key-rotation fallback
- Single-flight token refresh per (user_id, provider)
- Audit logging with automatic redaction

SECURITY:
- Tokens are encrypted at rest using ENCRYPTION_KEY_CURRENT
- No plaintext tokens outside process memory
- Tokens NEVER appear in logs or API responses
- Allowed in logs: user_id, provider, account_email

Usage:
    from src.credentials import TokenLifecycleManager, CredentialStore

    manager = TokenLifecycleManager(
        store=CredentialStore(db_session),
        state_store=state_store,
        cipher=CredentialCipher(),
        clients=ProviderClientRegistry(),
        refresh_coordinator=coordinator,
    )
    access_token = await manager.get_valid_access_token(user_id)
"""

from src.credentials.encryption import CredentialCipher, EncryptedBlob
from src.credentials.errors import CredentialError
from src.credentials.lifecycle import (
    AuthorizationRequest,
    CredentialMetadata,
    CredentialStatus,
    TokenLifecycleManager,
)
from src.credentials.redaction import (
    AuditEventType,
    CredentialAuditLogger,
    redact_credential_data,
)
from src.credentials.refresh import RefreshCoordinator, RefreshResult, RefreshResultStatus
from src.credentials.scopes import ScopeValidator
from src.credentials.state import AuthorizationStateStore, RedisAuthorizationStateStore
from src.credentials.store import CredentialStore

__all__ = [
    # Lifecycle
    "TokenLifecycleManager",
    "AuthorizationRequest",
    "CredentialMetadata",
    "CredentialStatus",
    # Refresh
    "RefreshCoordinator",
    "RefreshResult",
    "RefreshResultStatus",
    # Policy & state
    "ScopeValidator",
    "AuthorizationStateStore",
    "RedisAuthorizationStateStore",
    # Store & encryption
    "CredentialStore",
    "CredentialCipher",
    "EncryptedBlob",
    "CredentialError",
    # Redaction & Audit
    "redact_credential_data",
    "CredentialAuditLogger",
    "AuditEventType",
]
