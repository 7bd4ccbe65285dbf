"""
OAuthCredential model - one user's OAuth2 grant for one provider.

SECURITY REQUIREMENTS:
- access and refresh tokens are stored only as AES-GCM blobs (ciphertext + iv)
- Tokens are NEVER exposed in API responses, reprs or logs
- At most one row per (user_id, provider)
- scopes is a subset of the provider allow-list, enforced at write time

The row is exclusively written by TokenLifecycleManager through
CredentialStore.
"""

import enum
import json
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, Enum, Index, String, Text, UniqueConstraint

from src.db_base import Base
from src.models.base import TimestampMixin


class CredentialProvider(str, enum.Enum):
    """Supported OAuth providers."""
    GOOGLE = "google"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"
    OUTLOOK = "outlook"
    ASANA = "asana"
    NOTION = "notion"
    CALENDLY = "calendly"
    LINKEDIN = "linkedin"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class OAuthCredential(Base, TimestampMixin):
    """
    Durable representation of one user's per-provider OAuth2 grant.

    SECURITY:
    - *_encrypted / *_iv columns hold base64 AES-GCM output, never plaintext
    - external_account_id and account_email are display metadata (allowed in logs)
    """

    __tablename__ = "oauth_credentials"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    user_id = Column(
        String(255),
        nullable=False,
        comment="Owning user, issued by the identity subsystem"
    )
    provider = Column(
        Enum(CredentialProvider),
        nullable=False,
        comment="OAuth provider (google, outlook, etc.)"
    )

    # Encrypted tokens - NEVER log these values
    access_token_encrypted = Column(
        Text,
        nullable=False,
        comment="Encrypted access token - NEVER log plaintext"
    )
    access_token_iv = Column(
        String(64),
        nullable=False,
        comment="Base64 IV for access_token_encrypted"
    )
    refresh_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Encrypted refresh token - NEVER log plaintext"
    )
    refresh_token_iv = Column(
        String(64),
        nullable=True,
        comment="Base64 IV for refresh_token_encrypted"
    )

    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the access token stops being usable"
    )
    last_refreshed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the access token was last refreshed"
    )

    scopes = Column(
        Text,
        nullable=False,
        default="[]",
        comment="JSON array of granted OAuth scopes, in grant order"
    )

    # Display metadata from the provider user-info call (allowed in logs)
    external_account_id = Column(
        String(255),
        nullable=True,
        comment="Account id at the provider"
    )
    account_email = Column(
        String(320),
        nullable=True,
        comment="Account email at the provider"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider",
            name="uq_oauth_credentials_user_provider"
        ),
        Index("ix_oauth_credentials_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        """Safe repr - NEVER include token values."""
        return (
            f"<OAuthCredential("
            f"id={self.id}, "
            f"user_id={self.user_id}, "
            f"provider={self.provider}, "
            f"expires_at={self.expires_at})>"
        )

    @property
    def scope_list(self) -> List[str]:
        return json.loads(self.scopes) if self.scopes else []

    @scope_list.setter
    def scope_list(self, value: List[str]) -> None:
        self.scopes = json.dumps(list(value))

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token_encrypted and self.refresh_token_iv)

    def is_token_expired(self, now: Optional[datetime] = None) -> bool:
        """True once now >= expires_at."""
        now = now or datetime.now(timezone.utc)
        return now >= as_utc(self.expires_at)

