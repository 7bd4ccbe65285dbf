"""
Credential error taxonomy.

Every failure in the credential core is one of these. Each is distinct and
user-actionable; none ever carries token values, codes or keys.
"""

from typing import Optional


class CredentialError(Exception):
    """Base exception for the credential core."""
    pass


class UnsupportedProviderError(CredentialError):
    """Provider is unknown or has no usable configuration."""

    def __init__(self, provider: str, reason: str = "not supported"):
        self.provider = provider
        super().__init__(f"Provider {provider} is {reason}")


class InvalidOrExpiredState(CredentialError):
    """CSRF state is missing, already consumed or older than its TTL."""

    def __init__(self, message: str = "Invalid or expired authorization state"):
        super().__init__(message)


class AuthorizationDeniedError(CredentialError):
    """Provider redirected back with an error instead of a code."""

    def __init__(self, provider_error: str):
        self.provider_error = provider_error
        super().__init__(f"Authorization denied by provider: {provider_error}")


class CodeExchangeError(CredentialError):
    """Provider rejected the authorization code."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CredentialNotFoundError(CredentialError):
    """No stored grant for user + provider."""

    def __init__(self, user_id: str, provider: str):
        self.user_id = user_id
        self.provider = provider
        super().__init__(f"No {provider} credential for user {user_id}")


class RefreshUnavailableError(CredentialError):
    """Access token expired and no refresh token on file. Re-authorize."""

    def __init__(self, user_id: str, provider: str):
        self.user_id = user_id
        self.provider = provider
        super().__init__(
            f"{provider} access token expired and no refresh token is stored; "
            "re-authorization required"
        )


class RefreshFailedError(CredentialError):
    """Provider rejected the refresh token."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeoutError(CredentialError):
    """Provider call timed out. Transient; the stored credential is untouched."""

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Provider {operation} timed out after {timeout_seconds:g}s"
        )


class ProviderResponseError(CredentialError):
    """Provider returned a payload that does not match the expected shape."""
    pass


class CipherError(CredentialError):
    """Base class for CredentialCipher failures."""
    pass


class EncryptionKeyError(CipherError):
    """Encryption key missing or not a base64 256-bit key."""
    pass


class EmptyPlaintextError(CipherError):
    """Refused to encrypt an empty value."""

    def __init__(self):
        super().__init__("Cannot encrypt empty plaintext")


class InvalidEncryptedDataError(CipherError):
    """EncryptedBlob is missing its ciphertext or iv."""

    def __init__(self, message: str = "Encrypted data is missing ciphertext or iv"):
        super().__init__(message)


class DecryptionError(CipherError):
    """Ciphertext failed under both the current and previous keys."""
    pass
