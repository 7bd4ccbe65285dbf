"""
OAuth credential configuration.

All values come from environment variables and are read when requested,
so tests and key rotation take effect without a restart.

Environment variables:
- <PROVIDER>_CLIENT_ID / _CLIENT_SECRET / _REDIRECT_URI  (e.g. GOOGLE_CLIENT_ID)
- ENCRYPTION_KEY_CURRENT:         base64 256-bit key (required)
- ENCRYPTION_KEY_PREVIOUS:        base64 256-bit key (optional, rotation)
- OAUTH_STATE_TTL_SECONDS:        CSRF state lifetime (default: "600")
- OAUTH_STATE_BACKEND:            "memory" or "redis" (default: "memory")
- REDIS_URL:                      Redis URL for the redis state backend
- OAUTH_PROVIDER_TIMEOUT_SECONDS: Outbound provider call timeout (default: "15")
- OAUTH_REFRESH_LEEWAY_SECONDS:   Refresh this early before expiry (default: "0")
"""

import os
from dataclasses import dataclass
from typing import Optional

ENCRYPTION_KEY_CURRENT_ENV = "ENCRYPTION_KEY_CURRENT"
ENCRYPTION_KEY_PREVIOUS_ENV = "ENCRYPTION_KEY_PREVIOUS"

DEFAULT_STATE_TTL_SECONDS = 600
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 15.0
DEFAULT_REDIS_URL = "redis://redis:6379/0"


@dataclass(frozen=True)
class ProviderSettings:
    """Client registration for one provider. client_secret is NEVER logged."""
    provider: str
    client_id: str
    client_secret: str
    redirect_uri: str

    def __repr__(self) -> str:
        return (
            f"ProviderSettings(provider={self.provider!r}, "
            f"client_id={self.client_id!r}, redirect_uri={self.redirect_uri!r})"
        )


def get_provider_settings(provider: str) -> Optional[ProviderSettings]:
    """
    Load client registration for a provider.

    Returns None when <PROVIDER>_CLIENT_ID is not set.
    """
    prefix = provider.upper()
    client_id = os.getenv(f"{prefix}_CLIENT_ID")
    if not client_id:
        return None
    return ProviderSettings(
        provider=provider,
        client_id=client_id,
        client_secret=os.getenv(f"{prefix}_CLIENT_SECRET", ""),
        redirect_uri=os.getenv(f"{prefix}_REDIRECT_URI", ""),
    )


def get_encryption_keys() -> tuple[Optional[str], Optional[str]]:
    """Return (current, previous) base64 keys; either may be None."""
    current = os.getenv(ENCRYPTION_KEY_CURRENT_ENV) or None
    previous = os.getenv(ENCRYPTION_KEY_PREVIOUS_ENV) or None
    return current, previous


def get_state_ttl_seconds() -> int:
    return int(os.getenv("OAUTH_STATE_TTL_SECONDS", str(DEFAULT_STATE_TTL_SECONDS)))


def get_state_backend() -> str:
    return os.getenv("OAUTH_STATE_BACKEND", "memory").lower()


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", DEFAULT_REDIS_URL)


def get_provider_timeout_seconds() -> float:
    return float(
        os.getenv("OAUTH_PROVIDER_TIMEOUT_SECONDS", str(DEFAULT_PROVIDER_TIMEOUT_SECONDS))
    )


def get_refresh_leeway_seconds() -> int:
    return int(os.getenv("OAUTH_REFRESH_LEEWAY_SECONDS", "0"))
