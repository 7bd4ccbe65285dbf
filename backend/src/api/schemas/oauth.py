"""
OAuth credential API schemas.

SECURITY: No schema in this module carries token values. Responses expose
only ownership, scope and expiry.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


# =============================================================================
# Response Models
# =============================================================================

class AuthorizationStartResponse(BaseModel):
    """Where to send the user to grant access."""

    authorization_url: str
    state: str


class AuthorizationCallbackResponse(BaseModel):
    """Result of a successful authorization callback."""

    success: bool = True
    user_id: str
    provider: str
    scope: List[str]
    expires_at: datetime
    account_email: Optional[str] = None


class CredentialStatusResponse(BaseModel):
    """Connection status for one user and provider."""

    connected: bool
    is_valid: bool
    expires_at: Optional[datetime] = None
    scope: List[str] = []


class RevokeResponse(BaseModel):
    """Revocation always reports success; deleted says whether a grant existed."""

    success: bool = True
    deleted: bool
