"""
Credential storage for OAuth grants.

SECURITY REQUIREMENTS:
- Only encrypted blobs are handed to this layer; it never sees plaintext
- One row per (user_id, provider); re-authorization replaces the row
- Every write commits, so a refreshed token is visible to other sessions
  before the caller releases its per-credential refresh lock

Usage:
    store = CredentialStore(db_session)

    record = store.upsert(
        user_id="user-1",
        provider=CredentialProvider.GOOGLE,
        access_token=blob,
        refresh_token=refresh_blob,
        expires_at=expires_at,
        scopes=["https://www.googleapis.com/auth/gmail.send"],
    )

    store.delete("user-1", CredentialProvider.GOOGLE)
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.credentials.encryption import EncryptedBlob
from src.models.oauth_credential import CredentialProvider, OAuthCredential

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    SQLAlchemy-backed store keyed by (user_id, provider).

    Last write wins per key; serialising refreshes is the caller's job.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(
        self,
        user_id: str,
        provider: CredentialProvider,
        reload: bool = False,
    ) -> Optional[OAuthCredential]:
        """
        Fetch the credential row for (user_id, provider).

        Args:
            reload: Bypass the session identity map and re-read the row,
                picking up writes committed by other sessions.
        """
        stmt = select(OAuthCredential).where(
            OAuthCredential.user_id == user_id,
            OAuthCredential.provider == provider,
        )
        if reload:
            stmt = stmt.execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def upsert(
        self,
        user_id: str,
        provider: CredentialProvider,
        access_token: EncryptedBlob,
        refresh_token: Optional[EncryptedBlob],
        expires_at: datetime,
        scopes: List[str],
        external_account_id: Optional[str] = None,
        account_email: Optional[str] = None,
    ) -> OAuthCredential:
        """
        Create or replace the grant for (user_id, provider).

        A prior row's tokens are overwritten in place, including clearing
        its refresh token when the new grant has none.
        """
        credential = self.get(user_id, provider)
        created = credential is None
        if created:
            credential = OAuthCredential(user_id=user_id, provider=provider)
            self.db.add(credential)

        credential.access_token_encrypted = access_token.ciphertext
        credential.access_token_iv = access_token.iv
        credential.refresh_token_encrypted = refresh_token.ciphertext if refresh_token else None
        credential.refresh_token_iv = refresh_token.iv if refresh_token else None
        credential.expires_at = expires_at
        credential.scope_list = scopes
        credential.external_account_id = external_account_id
        credential.account_email = account_email
        credential.last_refreshed_at = None

        self.db.commit()

        logger.info(
            "Credential stored",
            extra={
                "credential_id": credential.id,
                "user_id": user_id,
                "provider": provider.value,
                "action": "created" if created else "replaced",
            }
        )
        return credential

    def update_tokens(
        self,
        credential: OAuthCredential,
        access_token: EncryptedBlob,
        expires_at: datetime,
        refresh_token: Optional[EncryptedBlob] = None,
    ) -> OAuthCredential:
        """Persist a refreshed access token; replace the refresh token only if rotated."""
        credential.access_token_encrypted = access_token.ciphertext
        credential.access_token_iv = access_token.iv
        if refresh_token is not None:
            credential.refresh_token_encrypted = refresh_token.ciphertext
            credential.refresh_token_iv = refresh_token.iv
        credential.expires_at = expires_at
        credential.last_refreshed_at = datetime.now(timezone.utc)

        self.db.commit()
        return credential

    def replace_blobs(
        self,
        credential: OAuthCredential,
        access_token: EncryptedBlob,
        refresh_token: Optional[EncryptedBlob],
    ) -> OAuthCredential:
        """Swap encrypted blobs without touching expiry (key rotation)."""
        credential.access_token_encrypted = access_token.ciphertext
        credential.access_token_iv = access_token.iv
        if refresh_token is not None:
            credential.refresh_token_encrypted = refresh_token.ciphertext
            credential.refresh_token_iv = refresh_token.iv
        self.db.commit()
        return credential

    def delete(self, user_id: str, provider: CredentialProvider) -> bool:
        """Delete the grant. Returns False if there was nothing to delete."""
        credential = self.get(user_id, provider)
        if credential is None:
            return False

        credential_id = credential.id
        self.db.delete(credential)
        self.db.commit()

        logger.info(
            "Credential deleted",
            extra={
                "credential_id": credential_id,
                "user_id": user_id,
                "provider": provider.value,
            }
        )
        return True

    def list_expiring(self, before: datetime) -> List[OAuthCredential]:
        """Credentials with a refresh token whose access token expires before `before`."""
        stmt = (
            select(OAuthCredential)
            .where(OAuthCredential.expires_at <= before)
            .where(OAuthCredential.refresh_token_encrypted.isnot(None))
            .order_by(OAuthCredential.expires_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_all(self) -> List[OAuthCredential]:
        stmt = select(OAuthCredential).order_by(OAuthCredential.id)
        return list(self.db.execute(stmt).scalars().all())
