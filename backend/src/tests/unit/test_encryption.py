"""
Tests for credential encryption.

Tests AES-256-GCM encryption/decryption with current/previous key fallback.
"""

import base64

import pytest

from src.credentials.encryption import (
    CredentialCipher,
    EncryptedBlob,
    IV_SIZE,
    KEY_SIZE,
    validate_encryption_ready,
)
from src.credentials.errors import (
    DecryptionError,
    EmptyPlaintextError,
    EncryptionKeyError,
    InvalidEncryptedDataError,
)


def _keys(current, previous=None):
    return lambda: (current, previous)


class TestCredentialCipher:
    """Tests for CredentialCipher class."""

    @pytest.fixture
    def current_key(self) -> str:
        return CredentialCipher.generate_key()

    @pytest.fixture
    def cipher(self, current_key: str) -> CredentialCipher:
        return CredentialCipher(key_provider=_keys(current_key))

    def test_generate_key_is_base64_32_bytes(self):
        """Test that generate_key produces a base64 256-bit key."""
        key = CredentialCipher.generate_key()
        assert len(base64.b64decode(key)) == KEY_SIZE

    def test_generate_key_is_random(self):
        assert CredentialCipher.generate_key() != CredentialCipher.generate_key()

    def test_is_valid_key(self, current_key: str):
        assert CredentialCipher.is_valid_key(current_key) is True

    def test_is_valid_key_rejects_bad_candidates(self):
        short = base64.b64encode(b"x" * 16).decode()
        long = base64.b64encode(b"x" * 33).decode()
        assert CredentialCipher.is_valid_key(short) is False
        assert CredentialCipher.is_valid_key(long) is False
        assert CredentialCipher.is_valid_key("not base64 at all!") is False
        assert CredentialCipher.is_valid_key("") is False
        assert CredentialCipher.is_valid_key(None) is False

    def test_encrypt_decrypt_roundtrip(self, cipher: CredentialCipher):
        plaintext = "test_access_token_not_real"
        blob = cipher.encrypt(plaintext)
        assert cipher.decrypt(blob) == plaintext

    def test_encrypt_unicode(self, cipher: CredentialCipher):
        plaintext = "tökén-✓-値"
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_iv_is_16_bytes(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value")
        assert len(base64.b64decode(blob.iv)) == IV_SIZE

    def test_same_plaintext_never_repeats(self, cipher: CredentialCipher):
        """Fresh IV per call: identical plaintexts never share ciphertext."""
        blobs = {cipher.encrypt("same-token-value") for _ in range(20)}
        assert len({b.ciphertext for b in blobs}) == 20
        assert len({b.iv for b in blobs}) == 20

    def test_plaintext_not_in_ciphertext(self, cipher: CredentialCipher):
        plaintext = "plaintext-marker-value"
        blob = cipher.encrypt(plaintext)
        assert plaintext not in blob.ciphertext
        assert plaintext not in base64.b64decode(blob.ciphertext).decode("latin-1")

    def test_encrypt_empty_raises(self, cipher: CredentialCipher):
        with pytest.raises(EmptyPlaintextError):
            cipher.encrypt("")

    def test_decrypt_empty_blob_raises(self, cipher: CredentialCipher):
        with pytest.raises(InvalidEncryptedDataError):
            cipher.decrypt(EncryptedBlob.from_dict({"data": "", "iv": ""}))

    def test_decrypt_missing_iv_raises(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value")
        with pytest.raises(InvalidEncryptedDataError):
            cipher.decrypt(EncryptedBlob(ciphertext=blob.ciphertext, iv=""))

    def test_decrypt_tampered_ciphertext_fails(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value-to-tamper")
        raw = bytearray(base64.b64decode(blob.ciphertext))
        raw[0] ^= 0x01
        tampered = EncryptedBlob(ciphertext=base64.b64encode(bytes(raw)).decode(), iv=blob.iv)

        with pytest.raises(DecryptionError):
            cipher.decrypt(tampered)

    def test_decrypt_truncated_ciphertext_fails(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value-to-truncate")
        raw = base64.b64decode(blob.ciphertext)[:5]
        truncated = EncryptedBlob(ciphertext=base64.b64encode(raw).decode(), iv=blob.iv)

        with pytest.raises(DecryptionError):
            cipher.decrypt(truncated)

    def test_decrypt_with_wrong_iv_fails(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value")
        other = cipher.encrypt("value")
        with pytest.raises(DecryptionError):
            cipher.decrypt(EncryptedBlob(ciphertext=blob.ciphertext, iv=other.iv))

    def test_decrypt_non_base64_fails(self, cipher: CredentialCipher):
        with pytest.raises(DecryptionError):
            cipher.decrypt(EncryptedBlob(ciphertext="!!!not-base64!!!", iv="!!!"))

    def test_associated_data_roundtrip(self, cipher: CredentialCipher):
        blob = cipher.encrypt("value", associated_data=b"user-1:google:access_token")
        assert cipher.decrypt(blob, associated_data=b"user-1:google:access_token") == "value"

    def test_wrong_associated_data_fails(self, cipher: CredentialCipher):
        """A blob copied to another row does not decrypt."""
        blob = cipher.encrypt("value", associated_data=b"user-1:google:access_token")
        with pytest.raises(DecryptionError):
            cipher.decrypt(blob, associated_data=b"user-2:google:access_token")

    def test_missing_current_key_raises(self):
        cipher = CredentialCipher(key_provider=_keys(None))
        with pytest.raises(EncryptionKeyError, match="not configured"):
            cipher.encrypt("value")

    def test_invalid_current_key_raises(self):
        cipher = CredentialCipher(key_provider=_keys("too-short"))
        with pytest.raises(EncryptionKeyError):
            cipher.encrypt("value")

    def test_key_error_never_echoes_key(self):
        bad_key = base64.b64encode(b"k" * 20).decode()
        cipher = CredentialCipher(key_provider=_keys(bad_key))
        with pytest.raises(EncryptionKeyError) as exc_info:
            cipher.encrypt("value")
        assert bad_key not in str(exc_info.value)


class TestKeyRotation:
    """Current/previous key fallback."""

    @pytest.fixture
    def old_key(self) -> str:
        return CredentialCipher.generate_key()

    @pytest.fixture
    def new_key(self) -> str:
        return CredentialCipher.generate_key()

    def test_previous_key_fallback(self, old_key: str, new_key: str):
        """Blobs from before the rotation still decrypt."""
        blob = CredentialCipher(key_provider=_keys(old_key)).encrypt("rotating-token")

        rotated = CredentialCipher(key_provider=_keys(new_key, old_key))
        assert rotated.decrypt(blob) == "rotating-token"

    def test_unrelated_current_key_fails(self, old_key: str, new_key: str):
        blob = CredentialCipher(key_provider=_keys(old_key)).encrypt("rotating-token")

        with pytest.raises(DecryptionError):
            CredentialCipher(key_provider=_keys(new_key)).decrypt(blob)

    def test_both_keys_wrong_fails(self, old_key: str, new_key: str):
        blob = CredentialCipher(key_provider=_keys(CredentialCipher.generate_key())).encrypt("x")

        with pytest.raises(DecryptionError):
            CredentialCipher(key_provider=_keys(new_key, old_key)).decrypt(blob)

    def test_invalid_previous_key_is_ignored(self, new_key: str):
        cipher = CredentialCipher(key_provider=_keys(new_key, "garbage"))
        blob = cipher.encrypt("value")
        assert cipher.decrypt(blob) == "value"

    def test_new_encryptions_use_current_key(self, old_key: str, new_key: str):
        rotated = CredentialCipher(key_provider=_keys(new_key, old_key))
        blob = rotated.encrypt("fresh-token")

        assert CredentialCipher(key_provider=_keys(new_key)).decrypt(blob) == "fresh-token"

    def test_needs_reencryption(self, old_key: str, new_key: str):
        old_blob = CredentialCipher(key_provider=_keys(old_key)).encrypt("token")
        rotated = CredentialCipher(key_provider=_keys(new_key, old_key))

        assert rotated.needs_reencryption(old_blob) is True
        assert rotated.needs_reencryption(rotated.encrypt("token")) is False

    def test_reencrypt_moves_blob_to_current_key(self, old_key: str, new_key: str):
        old_blob = CredentialCipher(key_provider=_keys(old_key)).encrypt("token")
        rotated = CredentialCipher(key_provider=_keys(new_key, old_key))

        new_blob = rotated.reencrypt(old_blob)

        assert new_blob != old_blob
        assert CredentialCipher(key_provider=_keys(new_key)).decrypt(new_blob) == "token"


class TestEncryptedBlob:
    """Tests for EncryptedBlob."""

    def test_to_dict(self):
        blob = EncryptedBlob(ciphertext="Y2lwaGVy", iv="aXY=")
        assert blob.to_dict() == {"data": "Y2lwaGVy", "iv": "aXY="}

    def test_from_dict_accepts_data_or_ciphertext(self):
        assert EncryptedBlob.from_dict({"data": "a", "iv": "b"}) == EncryptedBlob("a", "b")
        assert EncryptedBlob.from_dict({"ciphertext": "a", "iv": "b"}) == EncryptedBlob("a", "b")

    def test_from_dict_missing_fields_become_empty(self):
        assert EncryptedBlob.from_dict({}) == EncryptedBlob("", "")

    def test_repr_is_redacted(self):
        blob = EncryptedBlob(ciphertext="secret-ciphertext", iv="secret-iv")
        assert "secret" not in repr(blob)


class TestValidateEncryptionReady:

    def test_valid_keys(self):
        assert validate_encryption_ready(_keys(CredentialCipher.generate_key())) is True

    def test_missing_current_key(self):
        with pytest.raises(EncryptionKeyError, match="ENCRYPTION_KEY_CURRENT"):
            validate_encryption_ready(_keys(None))

    def test_invalid_previous_key(self):
        with pytest.raises(EncryptionKeyError, match="ENCRYPTION_KEY_PREVIOUS"):
            validate_encryption_ready(_keys(CredentialCipher.generate_key(), "bad"))

    def test_reads_environment(self, encryption_key):
        assert validate_encryption_ready() is True
