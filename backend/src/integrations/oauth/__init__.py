"""OAuth2 provider integrations."""

from src.integrations.oauth.client import OAuth2ProviderClient, ProviderClientRegistry
from src.integrations.oauth.providers import PROVIDER_ENDPOINTS, ProviderEndpoints
from src.integrations.oauth.schemas import ProviderUserInfo, RefreshResponse, TokenResponse

__all__ = [
    "OAuth2ProviderClient",
    "ProviderClientRegistry",
    "PROVIDER_ENDPOINTS",
    "ProviderEndpoints",
    "ProviderUserInfo",
    "RefreshResponse",
    "TokenResponse",
]
