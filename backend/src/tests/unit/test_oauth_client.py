"""
Tests for the OAuth2 provider client.

Provider endpoints are faked with httpx.MockTransport.
"""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.config.oauth import ProviderSettings
from src.credentials.errors import (
    CodeExchangeError,
    ProviderResponseError,
    ProviderTimeoutError,
    RefreshFailedError,
    UnsupportedProviderError,
)
from src.integrations.oauth.client import OAuth2ProviderClient, ProviderClientRegistry
from src.integrations.oauth.providers import PROVIDER_ENDPOINTS
from src.models.oauth_credential import CredentialProvider

GOOGLE = CredentialProvider.GOOGLE
SETTINGS = ProviderSettings(
    provider="google",
    client_id="test-client-id",
    client_secret="test-client-secret",
    redirect_uri="https://app.example.com/callback",
)


def _client(handler) -> OAuth2ProviderClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OAuth2ProviderClient(
        GOOGLE, SETTINGS, PROVIDER_ENDPOINTS[GOOGLE], http_client=http_client, timeout_seconds=5
    )


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# ============================================================================
# TEST SUITE: AUTHORIZATION URL
# ============================================================================

class TestBuildAuthorizationUrl:

    def test_google_url_parameters(self):
        client = _client(lambda request: httpx.Response(500))
        scopes = [
            "https://www.googleapis.com/auth/gmail.send",
            "https://www.googleapis.com/auth/calendar",
        ]

        url = client.build_authorization_url(scopes, "a" * 32)

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://accounts.google.com/o/oauth2/v2/auth"
        assert params["client_id"] == "test-client-id"
        assert params["redirect_uri"] == "https://app.example.com/callback"
        assert params["response_type"] == "code"
        assert params["scope"] == " ".join(scopes)
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["state"] == "a" * 32

    def test_client_secret_never_in_url(self):
        client = _client(lambda request: httpx.Response(500))
        assert "test-client-secret" not in client.build_authorization_url([], "s")

    def test_facebook_uses_comma_separator(self):
        client = OAuth2ProviderClient(
            CredentialProvider.FACEBOOK,
            SETTINGS,
            PROVIDER_ENDPOINTS[CredentialProvider.FACEBOOK],
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )

        url = client.build_authorization_url(["email", "public_profile"], "s")

        assert parse_qs(urlparse(url).query)["scope"] == ["email,public_profile"]


# ============================================================================
# TEST SUITE: CODE EXCHANGE
# ============================================================================

class TestExchangeCode:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = _form(request)
            return httpx.Response(200, json={
                "access_token": "test-access-token",
                "refresh_token": "test-refresh-token",
                "expires_in": 3599,
                "scope": "https://www.googleapis.com/auth/gmail.send",
                "token_type": "Bearer",
            })

        tokens = await _client(handler).exchange_code("auth-code")

        assert seen["url"] == "https://oauth2.googleapis.com/token"
        assert seen["form"]["grant_type"] == "authorization_code"
        assert seen["form"]["code"] == "auth-code"
        assert seen["form"]["redirect_uri"] == "https://app.example.com/callback"
        assert tokens.access_token == "test-access-token"
        assert tokens.refresh_token == "test-refresh-token"
        assert tokens.expires_in == 3599
        assert tokens.granted_scopes() == ["https://www.googleapis.com/auth/gmail.send"]

    @pytest.mark.asyncio
    async def test_expires_in_defaults(self):
        client = _client(lambda r: httpx.Response(200, json={"access_token": "t"}))

        tokens = await client.exchange_code("code")

        assert tokens.expires_in == 3600
        assert tokens.refresh_token is None

    @pytest.mark.asyncio
    async def test_rejected_code(self):
        client = _client(lambda r: httpx.Response(400, json={
            "error": "invalid_grant",
            "error_description": "Bad Request",
        }))

        with pytest.raises(CodeExchangeError, match="invalid_grant") as exc_info:
            await client.exchange_code("used-code")
        assert exc_info.value.status_code == 400
        assert "used-code" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        client = _client(lambda r: httpx.Response(200, json={"expires_in": 3600}))

        with pytest.raises(ProviderResponseError, match="access_token"):
            await client.exchange_code("code")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(ProviderResponseError):
            await client.exchange_code("code")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeoutError):
            await _client(handler).exchange_code("code")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CodeExchangeError):
            await _client(handler).exchange_code("code")


# ============================================================================
# TEST SUITE: REFRESH
# ============================================================================

class TestRefreshAccessToken:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["form"] = _form(request)
            return httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})

        response = await _client(handler).refresh_access_token("stored-refresh")

        assert seen["form"]["grant_type"] == "refresh_token"
        assert seen["form"]["refresh_token"] == "stored-refresh"
        assert response.access_token == "new-access"
        assert response.refresh_token is None

    @pytest.mark.asyncio
    async def test_rotated_refresh_token(self):
        client = _client(lambda r: httpx.Response(200, json={
            "access_token": "new-access", "refresh_token": "rotated-refresh",
        }))

        response = await client.refresh_access_token("stored-refresh")

        assert response.refresh_token == "rotated-refresh"

    @pytest.mark.asyncio
    async def test_rejected(self):
        client = _client(lambda r: httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(RefreshFailedError, match="invalid_grant"):
            await client.refresh_access_token("revoked-refresh")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeoutError) as exc_info:
            await _client(handler).refresh_access_token("r")
        assert exc_info.value.operation == "refresh"


# ============================================================================
# TEST SUITE: USER INFO & REVOKE
# ============================================================================

class TestUserInfoAndRevoke:

    @pytest.mark.asyncio
    async def test_user_info(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"id": 12345, "email": "user@example.com", "name": "U"})

        info = await _client(handler).get_user_info("access")

        assert seen["auth"] == "Bearer access"
        assert info.id == "12345"
        assert info.email == "user@example.com"

    @pytest.mark.asyncio
    async def test_user_info_microsoft_shape(self):
        client = OAuth2ProviderClient(
            CredentialProvider.OUTLOOK,
            SETTINGS,
            PROVIDER_ENDPOINTS[CredentialProvider.OUTLOOK],
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"id": "ms-1", "mail": "ms@example.com"})
            )),
        )

        info = await client.get_user_info("access")

        assert info.email == "ms@example.com"

    @pytest.mark.asyncio
    async def test_user_info_failure(self):
        client = _client(lambda r: httpx.Response(401, json={"error": "invalid_token"}))

        with pytest.raises(ProviderResponseError):
            await client.get_user_info("access")

    @pytest.mark.asyncio
    async def test_revoke(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = _form(request)
            return httpx.Response(200)

        assert await _client(handler).revoke_token("refresh") is True
        assert seen["url"] == "https://oauth2.googleapis.com/revoke"
        assert seen["form"]["token"] == "refresh"

    @pytest.mark.asyncio
    async def test_revoke_refused(self):
        client = _client(lambda r: httpx.Response(400, json={"error": "invalid_token"}))
        assert await client.revoke_token("refresh") is False

    @pytest.mark.asyncio
    async def test_revoke_without_endpoint(self):
        client = OAuth2ProviderClient(
            CredentialProvider.OUTLOOK,
            SETTINGS,
            PROVIDER_ENDPOINTS[CredentialProvider.OUTLOOK],
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )
        assert await client.revoke_token("refresh") is False


# ============================================================================
# TEST SUITE: REGISTRY
# ============================================================================

class TestProviderClientRegistry:

    def test_builds_configured_client(self, google_client_env):
        registry = ProviderClientRegistry(http_client=httpx.AsyncClient())

        client = registry.get(GOOGLE)

        assert client.settings.client_id == "test-client-id"
        assert registry.get(GOOGLE) is client

    def test_unconfigured_provider(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)

        with pytest.raises(UnsupportedProviderError, match="not configured"):
            ProviderClientRegistry().get(GOOGLE)

    def test_provider_without_endpoints(self, monkeypatch):
        monkeypatch.setenv("NOTION_CLIENT_ID", "notion-id")

        with pytest.raises(UnsupportedProviderError):
            ProviderClientRegistry().get(CredentialProvider.NOTION)

    def test_settings_repr_hides_secret(self):
        assert "test-client-secret" not in repr(SETTINGS)

    @pytest.mark.asyncio
    async def test_aclose_owned_clients(self, google_client_env):
        registry = ProviderClientRegistry()
        client = registry.get(GOOGLE)

        await registry.aclose()

        assert client._client.is_closed
