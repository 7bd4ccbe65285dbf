"""
Credential encryption with key-rotation fallback.

Implements AES-256-GCM for OAuth tokens stored at rest.

SECURITY:
- Authenticated encryption: tampered, truncated or wrong-key ciphertext
  always raises DecryptionError, never returns wrong plaintext
- Fresh random 16-byte IV per call, so identical plaintexts never share
  a ciphertext
- Keys are base64-encoded 32-byte values read from configuration on every
  call (ENCRYPTION_KEY_CURRENT, optional ENCRYPTION_KEY_PREVIOUS)
- Plaintext, ciphertext and keys are never logged

Key rotation:
    1. ENCRYPTION_KEY_PREVIOUS <- old ENCRYPTION_KEY_CURRENT
    2. ENCRYPTION_KEY_CURRENT  <- CredentialCipher.generate_key()
    3. Optionally re-encrypt stored blobs (scripts/manage_encryption_keys.py rotate)
    4. Retire ENCRYPTION_KEY_PREVIOUS once nothing depends on it

Usage:
    from src.credentials.encryption import CredentialCipher

    cipher = CredentialCipher()
    blob = cipher.encrypt(access_token)
    plaintext = cipher.decrypt(blob)
"""

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.config.oauth import get_encryption_keys
from src.credentials.errors import (
    DecryptionError,
    EmptyPlaintextError,
    EncryptionKeyError,
    InvalidEncryptedDataError,
)

logger = logging.getLogger(__name__)


IV_SIZE = 16     # 128-bit IV, fresh per encryption
KEY_SIZE = 32    # 256 bits for AES-256

KeyProvider = Callable[[], Tuple[Optional[str], Optional[str]]]


@dataclass(frozen=True)
class EncryptedBlob:
    """
    Base64 ciphertext (with GCM tag appended) and base64 IV.

    SECURITY: never log or return this in an API response.
    """
    ciphertext: str
    iv: str

    def __repr__(self) -> str:
        return "EncryptedBlob(<redacted>)"

    def to_dict(self) -> Dict[str, str]:
        return {"data": self.ciphertext, "iv": self.iv}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "EncryptedBlob":
        """Accepts {"data", "iv"} or {"ciphertext", "iv"}; missing fields become ""."""
        data = data or {}
        return cls(
            ciphertext=data.get("data") or data.get("ciphertext") or "",
            iv=data.get("iv") or "",
        )


def _decode_key(key_string: str) -> bytes:
    try:
        key = base64.b64decode(key_string, validate=True)
    except (binascii.Error, ValueError):
        raise EncryptionKeyError("Encryption key is not valid base64") from None
    if len(key) != KEY_SIZE:
        raise EncryptionKeyError(
            f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


class CredentialCipher:
    """
    AES-256-GCM cipher for credential fields.

    Stateless apart from the key provider, which is asked for the
    (current, previous) keys on every call.
    """

    def __init__(self, key_provider: Optional[KeyProvider] = None):
        self._key_provider = key_provider or get_encryption_keys

    @staticmethod
    def generate_key() -> str:
        """Return a new random 256-bit key, base64 encoded."""
        return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("utf-8")

    @staticmethod
    def is_valid_key(candidate: Optional[str]) -> bool:
        """A key is valid iff it base64-decodes to exactly 32 bytes."""
        if not candidate:
            return False
        try:
            _decode_key(candidate)
        except EncryptionKeyError:
            return False
        return True

    def _current_key(self) -> bytes:
        current, _ = self._key_provider()
        if not current:
            raise EncryptionKeyError(
                "Encryption key not configured. Set ENCRYPTION_KEY_CURRENT."
            )
        return _decode_key(current)

    def _previous_key(self) -> Optional[bytes]:
        _, previous = self._key_provider()
        if not previous:
            return None
        try:
            return _decode_key(previous)
        except EncryptionKeyError:
            logger.error("ENCRYPTION_KEY_PREVIOUS is invalid and will be ignored")
            return None

    def encrypt(
        self,
        plaintext: str,
        associated_data: Optional[bytes] = None,
    ) -> EncryptedBlob:
        """
        Encrypt a credential value under the current key.

        Args:
            plaintext: Token to encrypt
            associated_data: Optional AAD binding the blob to its owner row

        Raises:
            EmptyPlaintextError: If plaintext is empty
            EncryptionKeyError: If the current key is missing or invalid
        """
        if not plaintext:
            raise EmptyPlaintextError()

        aesgcm = AESGCM(self._current_key())
        iv = secrets.token_bytes(IV_SIZE)
        ciphertext = aesgcm.encrypt(iv, plaintext.encode("utf-8"), associated_data)

        return EncryptedBlob(
            ciphertext=base64.b64encode(ciphertext).decode("utf-8"),
            iv=base64.b64encode(iv).decode("utf-8"),
        )

    def decrypt(
        self,
        blob: EncryptedBlob,
        associated_data: Optional[bytes] = None,
    ) -> str:
        """
        Decrypt with the current key, falling back once to the previous key.

        Raises:
            InvalidEncryptedDataError: If ciphertext or iv is missing/empty
            EncryptionKeyError: If the current key is missing or invalid
            DecryptionError: If both keys fail (wrong key, corruption, tampering)
        """
        if blob is None or not blob.ciphertext or not blob.iv:
            raise InvalidEncryptedDataError()

        try:
            ciphertext = base64.b64decode(blob.ciphertext, validate=True)
            iv = base64.b64decode(blob.iv, validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError("Encrypted data is not valid base64") from None

        current_key = self._current_key()
        try:
            return self._decrypt_with(current_key, ciphertext, iv, associated_data)
        except DecryptionError:
            previous_key = self._previous_key()
            if previous_key is None:
                logger.error("Credential decryption failed with current key")
                raise

        try:
            plaintext = self._decrypt_with(previous_key, ciphertext, iv, associated_data)
        except DecryptionError:
            logger.error("Credential decryption failed with current and previous keys")
            raise DecryptionError(
                "Failed to decrypt credential with current or previous key"
            ) from None

        logger.info("Credential decrypted with previous key; re-encryption recommended")
        return plaintext

    def needs_reencryption(
        self,
        blob: EncryptedBlob,
        associated_data: Optional[bytes] = None,
    ) -> bool:
        """True if the blob does not decrypt under the current key alone."""
        try:
            ciphertext = base64.b64decode(blob.ciphertext, validate=True)
            iv = base64.b64decode(blob.iv, validate=True)
            self._decrypt_with(self._current_key(), ciphertext, iv, associated_data)
        except (DecryptionError, binascii.Error, ValueError):
            return True
        return False

    def reencrypt(
        self,
        blob: EncryptedBlob,
        associated_data: Optional[bytes] = None,
    ) -> EncryptedBlob:
        """Decrypt (with fallback) and encrypt again under the current key."""
        plaintext = self.decrypt(blob, associated_data)
        try:
            return self.encrypt(plaintext, associated_data)
        finally:
            del plaintext

    @staticmethod
    def _decrypt_with(
        key: bytes,
        ciphertext: bytes,
        iv: bytes,
        associated_data: Optional[bytes],
    ) -> str:
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext, associated_data)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError, UnicodeDecodeError):
            # ValueError covers truncated data and bad IV lengths
            raise DecryptionError("Failed to decrypt credential") from None


def validate_encryption_ready(key_provider: Optional[KeyProvider] = None) -> bool:
    """
    Validate that encryption is properly configured.

    Call this during application startup to fail fast if the current key
    is missing or malformed.

    Raises:
        EncryptionKeyError: If encryption is not configured
    """
    current, previous = (key_provider or get_encryption_keys)()
    if not CredentialCipher.is_valid_key(current):
        raise EncryptionKeyError(
            "ENCRYPTION_KEY_CURRENT must be a base64-encoded 32-byte key. "
            "Generate one with scripts/manage_encryption_keys.py generate."
        )
    if previous and not CredentialCipher.is_valid_key(previous):
        raise EncryptionKeyError(
            "ENCRYPTION_KEY_PREVIOUS is set but is not a base64-encoded 32-byte key"
        )

    logger.info(
        "Credential encryption validated successfully",
        extra={"previous_key_configured": bool(previous)},
    )
    return True
