"""
Re-encryption of stored credentials after a key rotation.

Once ENCRYPTION_KEY_PREVIOUS holds the old key, every blob still
decrypts through the cipher's fallback. Re-encrypting moves them under
ENCRYPTION_KEY_CURRENT so the previous key can be retired.

Run from scripts/manage_encryption_keys.py rotate, ideally while the
proactive refresh worker is paused: this path does not take the
per-credential refresh lock.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from src.credentials.encryption import CredentialCipher, EncryptedBlob
from src.credentials.errors import CipherError
from src.credentials.lifecycle import (
    ACCESS_TOKEN_FIELD,
    REFRESH_TOKEN_FIELD,
    access_token_blob,
    credential_aad,
    refresh_token_blob,
)
from src.credentials.store import CredentialStore
from src.models.oauth_credential import OAuthCredential

logger = logging.getLogger(__name__)


@dataclass
class RotationStats:
    """Outcome of a rotation pass. Holds ids only, never token values."""
    total: int = 0
    reencrypted: int = 0
    already_current: int = 0
    failed: int = 0
    failed_credential_ids: List[str] = field(default_factory=list)


def stale_blobs(
    cipher: CredentialCipher,
    credential: OAuthCredential,
) -> Dict[str, Tuple[EncryptedBlob, bytes]]:
    """
    Blobs of a credential that do not decrypt under the current key.

    Keyed by field name; each value is the blob and its associated data.
    Reads only, never writes.
    """
    candidates = {
        ACCESS_TOKEN_FIELD: access_token_blob(credential),
        REFRESH_TOKEN_FIELD: refresh_token_blob(credential),
    }
    stale = {}
    for field_name, blob in candidates.items():
        if blob is None:
            continue
        aad = credential_aad(credential.user_id, credential.provider, field_name)
        if cipher.needs_reencryption(blob, aad):
            stale[field_name] = (blob, aad)
    return stale


def reencrypt_credential(
    store: CredentialStore,
    cipher: CredentialCipher,
    credential: OAuthCredential,
    dry_run: bool = False,
) -> bool:
    """
    Re-encrypt one credential's blobs under the current key.

    With dry_run, stale blobs are decrypted but nothing is written, so a
    row that fails under both keys still raises.

    Returns:
        True if the row was (or would be) rewritten, False if already current

    Raises:
        DecryptionError: If a blob fails under both keys
    """
    stale = stale_blobs(cipher, credential)
    if not stale:
        return False

    if dry_run:
        for blob, aad in stale.values():
            cipher.decrypt(blob, aad)
        return True

    reencrypted = {
        field_name: cipher.reencrypt(blob, aad)
        for field_name, (blob, aad) in stale.items()
    }
    store.replace_blobs(
        credential,
        access_token=reencrypted.get(ACCESS_TOKEN_FIELD, access_token_blob(credential)),
        refresh_token=reencrypted.get(REFRESH_TOKEN_FIELD),
    )
    return True


def rotate_encryption(
    store: CredentialStore,
    cipher: CredentialCipher,
    dry_run: bool = False,
) -> RotationStats:
    """Re-encrypt every stored credential that still depends on the previous key."""
    stats = RotationStats()

    for credential in store.list_all():
        stats.total += 1
        try:
            if reencrypt_credential(store, cipher, credential, dry_run=dry_run):
                stats.reencrypted += 1
            else:
                stats.already_current += 1
        except CipherError as e:
            stats.failed += 1
            stats.failed_credential_ids.append(credential.id)
            logger.error(
                "Failed to re-encrypt credential",
                extra={
                    "credential_id": credential.id,
                    "user_id": credential.user_id,
                    "provider": credential.provider.value,
                    "error_type": type(e).__name__,
                },
            )

    logger.info(
        "Credential re-encryption complete",
        extra={
            "total": stats.total,
            "reencrypted": stats.reencrypted,
            "already_current": stats.already_current,
            "failed": stats.failed,
            "dry_run": dry_run,
        },
    )
    return stats
