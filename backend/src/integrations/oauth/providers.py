"""
OAuth2 endpoint metadata per provider.

Providers listed in the scope allow-list but absent here cannot complete
the authorization handshake and surface as UnsupportedProviderError.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from src.models.oauth_credential import CredentialProvider


@dataclass(frozen=True)
class ProviderEndpoints:
    """Static OAuth2 endpoints and authorize-URL conventions for one provider."""
    authorize_url: str
    token_url: str
    userinfo_url: Optional[str] = None
    revoke_url: Optional[str] = None
    scope_separator: str = " "
    # Added to every authorization URL (refresh-capable access, forced consent)
    extra_authorize_params: Dict[str, str] = field(default_factory=dict)


PROVIDER_ENDPOINTS: Dict[CredentialProvider, ProviderEndpoints] = {
    CredentialProvider.GOOGLE: ProviderEndpoints(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
        revoke_url="https://oauth2.googleapis.com/revoke",
        extra_authorize_params={
            "access_type": "offline",
            "prompt": "consent",
        },
    ),
    CredentialProvider.FACEBOOK: ProviderEndpoints(
        authorize_url="https://www.facebook.com/v18.0/dialog/oauth",
        token_url="https://graph.facebook.com/v18.0/oauth/access_token",
        userinfo_url="https://graph.facebook.com/me?fields=id,name,email",
        scope_separator=",",
        extra_authorize_params={"auth_type": "rerequest"},
    ),
    CredentialProvider.OUTLOOK: ProviderEndpoints(
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        userinfo_url="https://graph.microsoft.com/v1.0/me",
        extra_authorize_params={"prompt": "consent"},
    ),
    CredentialProvider.LINKEDIN: ProviderEndpoints(
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        revoke_url="https://www.linkedin.com/oauth/v2/revoke",
    ),
}


def get_provider_endpoints(provider: CredentialProvider) -> Optional[ProviderEndpoints]:
    return PROVIDER_ENDPOINTS.get(provider)
