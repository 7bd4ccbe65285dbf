"""
Database models for the OAuth credential store.
"""

from src.models.base import TimestampMixin
from src.models.oauth_credential import CredentialProvider, OAuthCredential

__all__ = [
    "TimestampMixin",
    "CredentialProvider",
    "OAuthCredential",
]
