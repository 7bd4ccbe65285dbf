"""Tests for the encryption key management script."""

import base64
import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.credentials.encryption import CredentialCipher, EncryptedBlob
from src.credentials.lifecycle import ACCESS_TOKEN_FIELD, REFRESH_TOKEN_FIELD, credential_aad
from src.credentials.store import CredentialStore
from src.models.oauth_credential import CredentialProvider


def _load_module():
    script_path = Path(__file__).resolve().parents[2] / "scripts" / "manage_encryption_keys.py"
    spec = importlib.util.spec_from_file_location("manage_encryption_keys", script_path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def script():
    return _load_module()


def _seed(session, cipher):
    google = CredentialProvider.GOOGLE
    CredentialStore(session).upsert(
        user_id="user-1",
        provider=google,
        access_token=cipher.encrypt("test-access", credential_aad("user-1", google, ACCESS_TOKEN_FIELD)),
        refresh_token=cipher.encrypt("test-refresh", credential_aad("user-1", google, REFRESH_TOKEN_FIELD)),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=[],
    )


def test_generate_prints_valid_key(script, capsys):
    assert script.main(["generate"]) == 0

    key = capsys.readouterr().out.strip()
    assert len(base64.b64decode(key)) == 32


def test_validate_ok(script, encryption_key):
    assert script.main(["validate"]) == 0


def test_validate_missing_key(script, monkeypatch):
    monkeypatch.delenv("ENCRYPTION_KEY_CURRENT", raising=False)

    assert script.main(["validate"]) == 1


def test_command_required(script):
    with pytest.raises(SystemExit):
        script.main([])


def test_rotate_reencrypts_under_current_key(script, monkeypatch, session_factory, db_session):
    old_key = CredentialCipher.generate_key()
    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", old_key)
    _seed(db_session, CredentialCipher())

    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", CredentialCipher.generate_key())
    monkeypatch.setenv("ENCRYPTION_KEY_PREVIOUS", old_key)
    monkeypatch.setattr("src.database.session.get_session_factory", lambda: session_factory)

    assert script.main(["rotate"]) == 0

    monkeypatch.delenv("ENCRYPTION_KEY_PREVIOUS")
    credential = CredentialStore(db_session).get("user-1", CredentialProvider.GOOGLE, reload=True)
    blob = EncryptedBlob(credential.access_token_encrypted, credential.access_token_iv)
    aad = credential_aad("user-1", CredentialProvider.GOOGLE, ACCESS_TOKEN_FIELD)
    assert CredentialCipher().decrypt(blob, aad) == "test-access"


def test_rotate_dry_run_writes_nothing(script, monkeypatch, session_factory, db_session):
    old_key = CredentialCipher.generate_key()
    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", old_key)
    _seed(db_session, CredentialCipher())
    before = CredentialStore(db_session).get("user-1", CredentialProvider.GOOGLE).access_token_encrypted

    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", CredentialCipher.generate_key())
    monkeypatch.setenv("ENCRYPTION_KEY_PREVIOUS", old_key)
    monkeypatch.setattr("src.database.session.get_session_factory", lambda: session_factory)

    assert script.main(["rotate", "--dry-run"]) == 0

    credential = CredentialStore(db_session).get("user-1", CredentialProvider.GOOGLE, reload=True)
    assert credential.access_token_encrypted == before


def test_rotate_fails_when_key_lost(script, monkeypatch, session_factory, db_session):
    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", CredentialCipher.generate_key())
    monkeypatch.delenv("ENCRYPTION_KEY_PREVIOUS", raising=False)
    _seed(db_session, CredentialCipher())

    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", CredentialCipher.generate_key())
    monkeypatch.setattr("src.database.session.get_session_factory", lambda: session_factory)

    assert script.main(["rotate"]) == 1
