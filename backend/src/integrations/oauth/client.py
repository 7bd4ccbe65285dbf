"""
OAuth2 provider client.

Speaks a provider's authorize, token, user-info and revoke endpoints over
httpx. It is a black box to the lifecycle manager: it returns typed
payloads or raises credential errors, and never logs token values.

Error mapping:
- timeout                    -> ProviderTimeoutError (transient)
- non-2xx on code exchange   -> CodeExchangeError
- non-2xx on refresh         -> RefreshFailedError
- unexpected payload shape   -> ProviderResponseError
"""

import logging
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx

from src.config.oauth import (
    ProviderSettings,
    get_provider_settings,
    get_provider_timeout_seconds,
)
from src.credentials.errors import (
    CodeExchangeError,
    ProviderResponseError,
    ProviderTimeoutError,
    RefreshFailedError,
    UnsupportedProviderError,
)
from src.integrations.oauth.providers import ProviderEndpoints, get_provider_endpoints
from src.integrations.oauth.schemas import (
    ProviderUserInfo,
    RefreshResponse,
    TokenResponse,
    parse_payload,
    provider_error_code,
)
from src.models.oauth_credential import CredentialProvider

logger = logging.getLogger(__name__)


class OAuth2ProviderClient:
    """
    Client for one provider's OAuth2 endpoints.

    Handles:
    - Building the authorization URL
    - Exchanging authorization codes
    - Refreshing access tokens
    - Fetching the account's user info
    - Revoking tokens
    """

    def __init__(
        self,
        provider: CredentialProvider,
        settings: ProviderSettings,
        endpoints: ProviderEndpoints,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.provider = provider
        self.settings = settings
        self.endpoints = endpoints
        self.timeout_seconds = timeout_seconds or get_provider_timeout_seconds()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=self.timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def build_authorization_url(self, scopes: list[str], state: str) -> str:
        """Compose the provider authorize URL for the given scopes and CSRF state."""
        params: Dict[str, str] = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": self.endpoints.scope_separator.join(scopes),
            **self.endpoints.extra_authorize_params,
            "state": state,
        }
        return f"{self.endpoints.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        Raises:
            CodeExchangeError: If the provider rejects the code
            ProviderTimeoutError: If the provider does not answer in time
            ProviderResponseError: If the payload is malformed
        """
        response = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "redirect_uri": self.settings.redirect_uri,
            },
            operation="code_exchange",
        )
        if response.status_code != 200:
            error_code = provider_error_code(self._json_or_empty(response))
            logger.warning(
                "Authorization code exchange rejected",
                extra={
                    "provider": self.provider.value,
                    "status_code": response.status_code,
                    "provider_error": error_code,
                },
            )
            raise CodeExchangeError(
                f"{self.provider.value} rejected the authorization code"
                + (f" ({error_code})" if error_code else ""),
                status_code=response.status_code,
            )
        return parse_payload(TokenResponse, self._json(response, "code_exchange"), "code_exchange")

    async def refresh_access_token(self, refresh_token: str) -> RefreshResponse:
        """
        Mint a new access token from a refresh token.

        Raises:
            RefreshFailedError: If the provider rejects the refresh token
            ProviderTimeoutError: If the provider does not answer in time
            ProviderResponseError: If the payload is malformed
        """
        response = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
            },
            operation="refresh",
        )
        if response.status_code != 200:
            error_code = provider_error_code(self._json_or_empty(response))
            logger.warning(
                "Token refresh rejected",
                extra={
                    "provider": self.provider.value,
                    "status_code": response.status_code,
                    "provider_error": error_code,
                },
            )
            raise RefreshFailedError(
                f"{self.provider.value} token refresh failed: {response.status_code}"
                + (f" ({error_code})" if error_code else ""),
                status_code=response.status_code,
            )
        return parse_payload(RefreshResponse, self._json(response, "refresh"), "refresh")

    async def get_user_info(self, access_token: str) -> ProviderUserInfo:
        """
        Fetch the account identity behind an access token.

        Raises:
            ProviderResponseError: On non-2xx or a malformed payload
            ProviderTimeoutError: If the provider does not answer in time
        """
        if not self.endpoints.userinfo_url:
            raise ProviderResponseError(
                f"{self.provider.value} has no user-info endpoint configured"
            )
        try:
            response = await self._client.get(
                self.endpoints.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException:
            raise ProviderTimeoutError("user_info", self.timeout_seconds) from None
        except httpx.HTTPError as e:
            raise ProviderResponseError(
                f"{self.provider.value} user-info request failed: {type(e).__name__}"
            ) from None

        if response.status_code != 200:
            raise ProviderResponseError(
                f"{self.provider.value} user-info request failed: {response.status_code}"
            )
        return parse_payload(ProviderUserInfo, self._json(response, "user_info"), "user_info")

    async def revoke_token(self, token: str) -> bool:
        """
        Revoke a token at the provider.

        Returns False when the provider has no revoke endpoint or refuses.
        """
        if not self.endpoints.revoke_url:
            return False
        try:
            response = await self._client.post(
                self.endpoints.revoke_url,
                data={
                    "token": token,
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                },
            )
        except httpx.TimeoutException:
            raise ProviderTimeoutError("revoke", self.timeout_seconds) from None
        except httpx.HTTPError as e:
            raise ProviderResponseError(
                f"{self.provider.value} revoke request failed: {type(e).__name__}"
            ) from None

        if response.status_code != 200:
            logger.warning(
                "Provider token revocation refused",
                extra={"provider": self.provider.value, "status_code": response.status_code},
            )
            return False
        return True

    async def _post_token(self, data: Dict[str, str], operation: str) -> httpx.Response:
        try:
            return await self._client.post(self.endpoints.token_url, data=data)
        except httpx.TimeoutException:
            logger.warning(
                "Provider token endpoint timed out",
                extra={"provider": self.provider.value, "operation": operation},
            )
            raise ProviderTimeoutError(operation, self.timeout_seconds) from None
        except httpx.HTTPError as e:
            # Transport failures surface as the operation's own failure type
            message = f"{self.provider.value} {operation} request failed: {type(e).__name__}"
            if operation == "refresh":
                raise RefreshFailedError(message) from None
            raise CodeExchangeError(message) from None

    def _json(self, response: httpx.Response, operation: str) -> dict:
        try:
            return response.json()
        except ValueError:
            raise ProviderResponseError(
                f"Provider {operation} response is not valid JSON"
            ) from None

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


class ProviderClientRegistry:
    """
    Lazily builds one OAuth2ProviderClient per configured provider.

    A provider needs both endpoint metadata and a <PROVIDER>_CLIENT_ID.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self._clients: Dict[CredentialProvider, OAuth2ProviderClient] = {}

    def register(self, client: OAuth2ProviderClient) -> None:
        self._clients[client.provider] = client

    def get(self, provider: CredentialProvider) -> OAuth2ProviderClient:
        """
        Return the client for a provider.

        Raises:
            UnsupportedProviderError: If endpoints or client registration are missing
        """
        client = self._clients.get(provider)
        if client is not None:
            return client

        endpoints = get_provider_endpoints(provider)
        if endpoints is None:
            raise UnsupportedProviderError(provider.value, "not supported for authorization")
        settings = get_provider_settings(provider.value)
        if settings is None:
            raise UnsupportedProviderError(provider.value, "not configured")

        client = OAuth2ProviderClient(
            provider,
            settings,
            endpoints,
            http_client=self._http_client,
            timeout_seconds=self._timeout_seconds,
        )
        self._clients[provider] = client
        return client

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
