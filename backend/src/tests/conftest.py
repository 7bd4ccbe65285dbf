"""
Shared fixtures for credential tests.

Real SQLAlchemy sessions over in-memory SQLite (StaticPool so every
session sees the same database), fresh encryption keys per test and
Google client registration in the environment.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.credentials.encryption import CredentialCipher
from src.db_base import Base


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture
def encryption_key(monkeypatch):
    """Configure a fresh current key and no previous key."""
    key = CredentialCipher.generate_key()
    monkeypatch.setenv("ENCRYPTION_KEY_CURRENT", key)
    monkeypatch.delenv("ENCRYPTION_KEY_PREVIOUS", raising=False)
    return key


@pytest.fixture
def google_client_env(monkeypatch):
    """Google client registration for tests."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "https://app.example.com/api/oauth/google/callback")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session in a test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import src.models.oauth_credential  # noqa: F401
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Function-scoped session with autoflush=False, matching production."""
    session = session_factory()
    yield session
    session.close()
