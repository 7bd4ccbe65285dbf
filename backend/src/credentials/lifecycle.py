"""
OAuth2 credential lifecycle.

Drives one user's grant for one provider through its states:

    Unauthorized -> PendingCallback -> Active -> Refreshing -> Active
                                                            -> Expired-NoRefreshToken
    (any) -> revoke -> Unauthorized

SECURITY REQUIREMENTS:
- Every authorization callback is bound to a one-time CSRF state
- Access and refresh tokens are encrypted before they reach the store
- Tokens are decrypted only in memory, and only to hand back to the caller
  or to the provider client
- No token values in logs, audit events, errors or returned metadata

CONCURRENCY:
- Refresh is single-flight per (user_id, provider) through the shared
  RefreshCoordinator; the row is re-read under the lock so concurrent
  callers observe the winner's refreshed token
- Provider calls run under a timeout. A timeout raises ProviderTimeoutError
  and leaves the stored credential untouched

Usage:
    manager = TokenLifecycleManager(
        store=CredentialStore(db_session),
        state_store=state_store,
        cipher=CredentialCipher(),
        clients=ProviderClientRegistry(),
        refresh_coordinator=coordinator,
    )

    request = manager.begin_authorization(user_id, ["https://www.googleapis.com/auth/gmail.send"])
    # redirect the user to request.authorization_url ...
    metadata = await manager.complete_authorization(code, state)
    access_token = await manager.get_valid_access_token(user_id)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar, Union

from src.config.oauth import get_provider_timeout_seconds, get_refresh_leeway_seconds
from src.credentials.encryption import CredentialCipher, EncryptedBlob
from src.credentials.errors import (
    AuthorizationDeniedError,
    CodeExchangeError,
    CredentialError,
    CredentialNotFoundError,
    InvalidOrExpiredState,
    ProviderTimeoutError,
    RefreshUnavailableError,
)
from src.credentials.redaction import AuditEventType, CredentialAuditLogger
from src.credentials.refresh import RefreshCoordinator, RefreshResult, RefreshResultStatus
from src.credentials.scopes import ScopeValidator, resolve_provider
from src.credentials.store import CredentialStore
from src.models.oauth_credential import CredentialProvider, OAuthCredential, as_utc

if TYPE_CHECKING:
    from src.integrations.oauth.client import ProviderClientRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderLike = Union[str, CredentialProvider]

ACCESS_TOKEN_FIELD = "access_token"
REFRESH_TOKEN_FIELD = "refresh_token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def credential_aad(user_id: str, provider: CredentialProvider, field_name: str) -> bytes:
    """Associated data binding an encrypted blob to its row and column."""
    return f"{user_id}:{provider.value}:{field_name}".encode("utf-8")


def access_token_blob(credential: OAuthCredential) -> EncryptedBlob:
    return EncryptedBlob(
        ciphertext=credential.access_token_encrypted or "",
        iv=credential.access_token_iv or "",
    )


def refresh_token_blob(credential: OAuthCredential) -> Optional[EncryptedBlob]:
    if not credential.has_refresh_token:
        return None
    return EncryptedBlob(
        ciphertext=credential.refresh_token_encrypted,
        iv=credential.refresh_token_iv,
    )


@dataclass(frozen=True)
class AuthorizationRequest:
    """Where to send the user, and the state the callback must echo."""
    authorization_url: str
    state: str


@dataclass(frozen=True)
class CredentialMetadata:
    """
    What a caller may learn about a stored grant.

    SECURITY: Does NOT include token values.
    """
    user_id: str
    provider: str
    scope: List[str]
    expires_at: datetime
    has_refresh_token: bool
    external_account_id: Optional[str] = None
    account_email: Optional[str] = None

    @classmethod
    def from_credential(cls, credential: OAuthCredential) -> "CredentialMetadata":
        return cls(
            user_id=credential.user_id,
            provider=credential.provider.value,
            scope=credential.scope_list,
            expires_at=as_utc(credential.expires_at),
            has_refresh_token=credential.has_refresh_token,
            external_account_id=credential.external_account_id,
            account_email=credential.account_email,
        )


@dataclass(frozen=True)
class CredentialStatus:
    """Connection status for a user and provider."""
    connected: bool
    is_valid: bool
    expires_at: Optional[datetime] = None
    scope: List[str] = field(default_factory=list)


class TokenLifecycleManager:
    """
    Orchestrates authorization, storage, refresh and revocation of grants.

    Cheap to construct per request; the state store, cipher, client
    registry and refresh coordinator are long-lived and shared.
    """

    def __init__(
        self,
        store: CredentialStore,
        state_store,
        cipher: CredentialCipher,
        clients: "ProviderClientRegistry",
        refresh_coordinator: RefreshCoordinator,
        timeout_seconds: Optional[float] = None,
        refresh_leeway: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.state_store = state_store
        self.cipher = cipher
        self.clients = clients
        self.refresh_coordinator = refresh_coordinator
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else get_provider_timeout_seconds()
        )
        self.refresh_leeway = (
            refresh_leeway
            if refresh_leeway is not None
            else timedelta(seconds=get_refresh_leeway_seconds())
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Authorization handshake
    # ------------------------------------------------------------------

    def begin_authorization(
        self,
        user_id: str,
        requested_scopes: Sequence[str],
        provider: ProviderLike = CredentialProvider.GOOGLE,
    ) -> AuthorizationRequest:
        """
        Build the provider authorization URL and issue a CSRF state.

        Nothing is persisted. An empty scope list after filtering is
        passed through; the provider then grants no usable permissions.

        Raises:
            UnsupportedProviderError: If the provider is unknown or not configured
        """
        resolved = resolve_provider(provider)
        scopes = ScopeValidator.validate_scopes(resolved, requested_scopes)
        client = self.clients.get(resolved)

        state = self.state_store.issue(user_id, provider=resolved.value, scopes=scopes)
        authorization_url = client.build_authorization_url(scopes, state)

        CredentialAuditLogger(user_id).log(
            event_type=AuditEventType.AUTHORIZATION_STARTED,
            provider=resolved.value,
            metadata={"scope_count": len(scopes)},
        )
        return AuthorizationRequest(authorization_url=authorization_url, state=state)

    async def complete_authorization(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        provider: Optional[ProviderLike] = None,
    ) -> CredentialMetadata:
        """
        Finish the handshake: consume state, exchange the code, store the grant.

        Any existing grant for (user_id, provider) is replaced. Its tokens
        are discarded without provider-side revocation.

        Args:
            code: Authorization code from the callback
            state: CSRF state from the callback
            error: Provider error from the callback; short-circuits the exchange
            provider: Provider named by the callback route, checked against the state

        Raises:
            InvalidOrExpiredState: If state is unknown, replayed, stale or for another provider
            AuthorizationDeniedError: If the provider returned an error
            CodeExchangeError: If the provider rejected the code
            ProviderTimeoutError: If the exchange timed out
        """
        entry = self.state_store.consume(state)
        resolved = resolve_provider(entry.provider or provider or CredentialProvider.GOOGLE)
        if provider is not None and resolve_provider(provider) != resolved:
            logger.warning(
                "Callback provider does not match authorization state",
                extra={"user_id": entry.user_id, "provider": resolved.value},
            )
            raise InvalidOrExpiredState()

        audit = CredentialAuditLogger(entry.user_id)
        if error:
            audit.log_error(resolved.value, f"authorization denied: {error}")
            raise AuthorizationDeniedError(error)
        if not code:
            raise CodeExchangeError("Authorization callback is missing the code")

        client = self.clients.get(resolved)
        tokens = await self._call_provider(client.exchange_code(code), "code_exchange")
        expires_at = self._clock() + timedelta(seconds=tokens.expires_in)

        granted = tokens.granted_scopes(client.endpoints.scope_separator) or entry.scopes
        scopes = ScopeValidator.validate_scopes(resolved, granted)

        external_account_id = None
        account_email = None
        try:
            user_info = await self._call_provider(
                client.get_user_info(tokens.access_token), "user_info"
            )
            external_account_id = user_info.id
            account_email = user_info.email
        except CredentialError as e:
            logger.warning(
                "Provider user info unavailable; storing grant without account metadata",
                extra={
                    "user_id": entry.user_id,
                    "provider": resolved.value,
                    "error_type": type(e).__name__,
                },
            )

        if tokens.refresh_token is None:
            logger.warning(
                "Provider issued no refresh token; grant cannot be refreshed",
                extra={"user_id": entry.user_id, "provider": resolved.value},
            )

        credential = self.store.upsert(
            user_id=entry.user_id,
            provider=resolved,
            access_token=self.cipher.encrypt(
                tokens.access_token,
                credential_aad(entry.user_id, resolved, ACCESS_TOKEN_FIELD),
            ),
            refresh_token=(
                self.cipher.encrypt(
                    tokens.refresh_token,
                    credential_aad(entry.user_id, resolved, REFRESH_TOKEN_FIELD),
                )
                if tokens.refresh_token
                else None
            ),
            expires_at=expires_at,
            scopes=scopes,
            external_account_id=external_account_id,
            account_email=account_email,
        )

        audit.log(
            event_type=AuditEventType.CREDENTIAL_STORED,
            provider=resolved.value,
            credential_id=credential.id,
            metadata={
                "scope_count": len(scopes),
                "has_refresh_token": credential.has_refresh_token,
                "account_email": account_email,
                "expires_at": expires_at.isoformat(),
            },
        )
        return CredentialMetadata.from_credential(credential)

    # ------------------------------------------------------------------
    # Token access and refresh
    # ------------------------------------------------------------------

    async def get_valid_access_token(
        self,
        user_id: str,
        provider: ProviderLike = CredentialProvider.GOOGLE,
    ) -> str:
        """
        Return a usable access token, refreshing it first if expired.

        Raises:
            CredentialNotFoundError: If no grant is stored
            RefreshUnavailableError: If expired and no refresh token is stored
            RefreshFailedError: If the provider rejected the refresh token
            ProviderTimeoutError: If the refresh timed out
            DecryptionError: If the stored token fails under both keys
        """
        resolved = resolve_provider(provider)
        credential = self.store.get(user_id, resolved)
        if credential is None:
            raise CredentialNotFoundError(user_id, resolved.value)

        if self._needs_refresh(credential):
            if not credential.has_refresh_token:
                raise RefreshUnavailableError(user_id, resolved.value)
            credential, access_token, _ = await self._refresh(
                user_id, resolved, refresh_before=self._clock() + self.refresh_leeway
            )
        else:
            access_token = self._decrypt_access_token(credential)

        CredentialAuditLogger(user_id).log(
            event_type=AuditEventType.CREDENTIAL_ACCESSED,
            provider=resolved.value,
            credential_id=credential.id,
        )
        return access_token

    def _needs_refresh(self, credential: OAuthCredential) -> bool:
        return credential.is_token_expired(self._clock() + self.refresh_leeway)

    async def _refresh(
        self,
        user_id: str,
        provider: CredentialProvider,
        refresh_before: datetime,
    ) -> Tuple[OAuthCredential, str, bool]:
        """
        Single-flight refresh for one key.

        Returns (credential, access_token, refreshed). refreshed is False
        when another caller refreshed while this one waited for the lock.
        """
        async with self.refresh_coordinator.lock_for(user_id, provider):
            credential = self.store.get(user_id, provider, reload=True)
            if credential is None:
                # Revoked while waiting
                raise CredentialNotFoundError(user_id, provider.value)

            if as_utc(credential.expires_at) > refresh_before:
                return credential, self._decrypt_access_token(credential), False

            if not credential.has_refresh_token:
                raise RefreshUnavailableError(user_id, provider.value)

            refresh_token = self.cipher.decrypt(
                refresh_token_blob(credential),
                credential_aad(user_id, provider, REFRESH_TOKEN_FIELD),
            )
            client = self.clients.get(provider)
            audit = CredentialAuditLogger(user_id)
            try:
                response = await self._call_provider(
                    client.refresh_access_token(refresh_token), "refresh"
                )
            except CredentialError as e:
                audit.log_error(provider.value, str(e), credential_id=credential.id)
                raise

            new_expires_at = self._clock() + timedelta(seconds=response.expires_in)
            rotated = (
                response.refresh_token
                if response.refresh_token and response.refresh_token != refresh_token
                else None
            )
            self.store.update_tokens(
                credential,
                access_token=self.cipher.encrypt(
                    response.access_token,
                    credential_aad(user_id, provider, ACCESS_TOKEN_FIELD),
                ),
                expires_at=new_expires_at,
                refresh_token=(
                    self.cipher.encrypt(
                        rotated, credential_aad(user_id, provider, REFRESH_TOKEN_FIELD)
                    )
                    if rotated
                    else None
                ),
            )

            audit.log(
                event_type=AuditEventType.CREDENTIAL_REFRESHED,
                provider=provider.value,
                credential_id=credential.id,
                metadata={
                    "new_expires_at": new_expires_at.isoformat(),
                    "refresh_token_rotated": rotated is not None,
                },
            )
            return credential, response.access_token, True

    async def refresh_expiring_credentials(
        self,
        within: timedelta,
        dry_run: bool = False,
    ) -> List[RefreshResult]:
        """
        Proactively refresh every grant expiring within the window.

        Best-effort housekeeping: a failure is recorded in its result and
        does not stop the batch.

        Args:
            within: Refresh credentials expiring within this window
            dry_run: Report what would be refreshed without calling providers
        """
        threshold = self._clock() + within
        expiring = [
            (c.id, c.user_id, c.provider) for c in self.store.list_expiring(threshold)
        ]

        results: List[RefreshResult] = []
        for credential_id, user_id, provider in expiring:
            if dry_run:
                results.append(RefreshResult(
                    status=RefreshResultStatus.WOULD_REFRESH,
                    credential_id=credential_id,
                    user_id=user_id,
                    provider=provider.value,
                ))
                continue

            try:
                credential, _, refreshed = await self._refresh(
                    user_id, provider, refresh_before=threshold
                )
                results.append(RefreshResult(
                    status=RefreshResultStatus.SUCCESS if refreshed else RefreshResultStatus.NOT_NEEDED,
                    credential_id=credential_id,
                    user_id=user_id,
                    provider=provider.value,
                    new_expires_at=as_utc(credential.expires_at),
                ))
            except (CredentialNotFoundError, RefreshUnavailableError) as e:
                results.append(RefreshResult(
                    status=RefreshResultStatus.NOT_POSSIBLE,
                    credential_id=credential_id,
                    user_id=user_id,
                    provider=provider.value,
                    error_message=str(e),
                ))
            except CredentialError as e:
                logger.error(
                    "Failed to refresh credential in batch",
                    extra={
                        "credential_id": credential_id,
                        "user_id": user_id,
                        "provider": provider.value,
                        "error_type": type(e).__name__,
                    }
                )
                results.append(RefreshResult(
                    status=RefreshResultStatus.FAILED,
                    credential_id=credential_id,
                    user_id=user_id,
                    provider=provider.value,
                    error_message=str(e),
                ))

        logger.info(
            "Completed scheduled token refresh",
            extra={
                "total": len(expiring),
                "success": sum(1 for r in results if r.status == RefreshResultStatus.SUCCESS),
                "failed": sum(1 for r in results if r.status == RefreshResultStatus.FAILED),
                "dry_run": dry_run,
            }
        )
        return results

    # ------------------------------------------------------------------
    # Status and revocation
    # ------------------------------------------------------------------

    def get_status(
        self,
        user_id: str,
        provider: ProviderLike = CredentialProvider.GOOGLE,
    ) -> CredentialStatus:
        """Connection status. Never decrypts or returns token material."""
        resolved = resolve_provider(provider)
        credential = self.store.get(user_id, resolved)
        if credential is None:
            return CredentialStatus(connected=False, is_valid=False)
        return CredentialStatus(
            connected=True,
            is_valid=not credential.is_token_expired(self._clock()),
            expires_at=as_utc(credential.expires_at),
            scope=credential.scope_list,
        )

    async def revoke(
        self,
        user_id: str,
        provider: ProviderLike = CredentialProvider.GOOGLE,
        revoke_at_provider: bool = True,
    ) -> bool:
        """
        Delete the stored grant. Idempotent.

        With revoke_at_provider, the refresh token (or the access token if
        there is none) is first revoked at the provider on a best-effort
        basis; provider failures are logged and never raised.

        Returns:
            True if a grant was deleted, False if there was none
        """
        resolved = resolve_provider(provider)
        async with self.refresh_coordinator.lock_for(user_id, resolved):
            credential = self.store.get(user_id, resolved, reload=True)
            if credential is None:
                logger.info(
                    "Revoke requested for absent credential",
                    extra={"user_id": user_id, "provider": resolved.value},
                )
                return False

            credential_id = credential.id
            revoked_at_provider = False
            if revoke_at_provider:
                revoked_at_provider = await self._revoke_at_provider(credential)

            self.store.delete(user_id, resolved)

        CredentialAuditLogger(user_id).log(
            event_type=AuditEventType.CREDENTIAL_REVOKED,
            provider=resolved.value,
            credential_id=credential_id,
            metadata={"revoked_at_provider": revoked_at_provider},
        )
        return True

    async def _revoke_at_provider(self, credential: OAuthCredential) -> bool:
        provider = credential.provider
        try:
            blob = refresh_token_blob(credential)
            if blob is not None:
                token = self.cipher.decrypt(
                    blob, credential_aad(credential.user_id, provider, REFRESH_TOKEN_FIELD)
                )
            else:
                token = self._decrypt_access_token(credential)
            client = self.clients.get(provider)
            return await self._call_provider(client.revoke_token(token), "revoke")
        except CredentialError as e:
            logger.warning(
                "Provider-side revocation failed; deleting local credential anyway",
                extra={
                    "credential_id": credential.id,
                    "user_id": credential.user_id,
                    "provider": provider.value,
                    "error_type": type(e).__name__,
                },
            )
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _decrypt_access_token(self, credential: OAuthCredential) -> str:
        return self.cipher.decrypt(
            access_token_blob(credential),
            credential_aad(credential.user_id, credential.provider, ACCESS_TOKEN_FIELD),
        )

    async def _call_provider(self, call: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Provider call timed out",
                extra={"operation": operation, "timeout_seconds": self.timeout_seconds},
            )
            raise ProviderTimeoutError(operation, self.timeout_seconds) from None
