"""
Scope allow-list policy per provider.

Requested scopes are filtered against a static allow-list. Unknown or
malicious scopes are dropped, never passed to the provider, and never
fail the whole request. An empty result means "no usable permissions".
"""

import logging
from typing import Dict, List, Sequence, Tuple, Union

from src.credentials.errors import UnsupportedProviderError
from src.models.oauth_credential import CredentialProvider

logger = logging.getLogger(__name__)


ALLOWED_SCOPES: Dict[CredentialProvider, Tuple[str, ...]] = {
    CredentialProvider.GOOGLE: (
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.modify",
        "https://www.googleapis.com/auth/gmail.compose",
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/spreadsheets.readonly",
        "https://www.googleapis.com/auth/documents",
        "https://www.googleapis.com/auth/documents.readonly",
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/calendar.events",
    ),
    CredentialProvider.FACEBOOK: (
        "email",
        "public_profile",
        "pages_manage_posts",
        "pages_read_engagement",
    ),
    CredentialProvider.INSTAGRAM: (
        "instagram_basic",
        "instagram_content_publish",
        "pages_show_list",
    ),
    CredentialProvider.WHATSAPP: (
        "whatsapp_business_management",
        "whatsapp_business_messaging",
    ),
    CredentialProvider.OUTLOOK: (
        "https://graph.microsoft.com/User.Read",
        "https://graph.microsoft.com/Mail.Read",
        "https://graph.microsoft.com/Mail.Send",
        "https://graph.microsoft.com/Calendars.ReadWrite",
    ),
    CredentialProvider.ASANA: ("default",),
    CredentialProvider.NOTION: ("read", "insert", "update"),
    CredentialProvider.CALENDLY: ("default",),
    CredentialProvider.LINKEDIN: (
        "r_liteprofile",
        "r_emailaddress",
        "w_member_social",
    ),
}


def resolve_provider(provider: Union[str, CredentialProvider]) -> CredentialProvider:
    """Map a provider name to CredentialProvider or raise UnsupportedProviderError."""
    if isinstance(provider, CredentialProvider):
        return provider
    try:
        return CredentialProvider(str(provider).lower())
    except ValueError:
        raise UnsupportedProviderError(str(provider)) from None


class ScopeValidator:
    """
    Static allow-list policy. Pure functions, no side effects.

    Allow-listing rather than deny-listing means a compromised or
    misconfigured caller can never escalate beyond the listed scopes.
    """

    @staticmethod
    def get_allowed_scopes(provider: Union[str, CredentialProvider]) -> Tuple[str, ...]:
        """
        Return the full allow-list for a provider, in policy order.

        Raises:
            UnsupportedProviderError: If the provider is not registered
        """
        resolved = resolve_provider(provider)
        allowed = ALLOWED_SCOPES.get(resolved)
        if allowed is None:
            raise UnsupportedProviderError(resolved.value)
        return allowed

    @staticmethod
    def validate_scopes(
        provider: Union[str, CredentialProvider],
        requested: Sequence[str],
    ) -> List[str]:
        """
        Return the requested scopes that appear in the allow-list.

        Input order is preserved and duplicates are collapsed to their
        first occurrence.

        Raises:
            UnsupportedProviderError: If the provider is not registered
        """
        allowed = set(ScopeValidator.get_allowed_scopes(provider))

        accepted: List[str] = []
        dropped = 0
        for scope in requested:
            if scope in allowed and scope not in accepted:
                accepted.append(scope)
            elif scope not in allowed:
                dropped += 1

        if dropped:
            logger.warning(
                "Dropped scopes outside allow-list",
                extra={
                    "provider": resolve_provider(provider).value,
                    "dropped_count": dropped,
                    "accepted_count": len(accepted),
                },
            )
        return accepted
