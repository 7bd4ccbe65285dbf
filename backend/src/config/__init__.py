"""Configuration module for backend services."""

from src.config.oauth import (
    ProviderSettings,
    get_encryption_keys,
    get_provider_settings,
    get_provider_timeout_seconds,
    get_refresh_leeway_seconds,
    get_state_backend,
    get_state_ttl_seconds,
)

__all__ = [
    "ProviderSettings",
    "get_encryption_keys",
    "get_provider_settings",
    "get_provider_timeout_seconds",
    "get_refresh_leeway_seconds",
    "get_state_backend",
    "get_state_ttl_seconds",
]
