"""
Tests for health and readiness endpoints.

CRITICAL: /health must return 200 whenever the process is up; readiness
reports whether credentials can actually be stored and decrypted.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.routes import health
from src.database.session import get_db_session
from src.platform.db_readiness import REQUIRED_CREDENTIAL_TABLES, check_required_tables


def _client(session) -> TestClient:
    app = FastAPI()
    app.include_router(health.router)
    app.dependency_overrides[get_db_session] = lambda: session
    return TestClient(app)


@pytest.fixture
def empty_session():
    """Session on a database with no tables."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    session = sessionmaker(bind=engine)()
    yield session
    session.close()
    engine.dispose()


class TestHealthEndpoint:

    def test_health_returns_200(self, db_session):
        response = _client(db_session).get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestReadinessEndpoint:

    def test_ready(self, db_session, encryption_key):
        response = _client(db_session).get("/api/health/readiness")

        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["credential_tables"]["missing"] == []
        assert data["checks"]["encryption"] == "ok"

    def test_not_ready_without_encryption_key(self, db_session, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_KEY_CURRENT", raising=False)

        data = _client(db_session).get("/api/health/readiness").json()

        assert data["status"] == "not_ready"
        assert data["checks"]["encryption"] == "not_configured"

    def test_not_ready_without_tables(self, empty_session, encryption_key):
        data = _client(empty_session).get("/api/health/readiness").json()

        assert data["status"] == "not_ready"
        assert data["checks"]["credential_tables"]["missing"] == ["oauth_credentials"]

    def test_key_never_returned(self, db_session, encryption_key):
        response = _client(db_session).get("/api/health/readiness")

        assert encryption_key not in response.text

    def test_configured_providers_listed(self, db_session, encryption_key, google_client_env):
        response = _client(db_session).get("/api/health/readiness")

        assert "google" in response.json()["checks"]["providers"]
        assert "test-client-secret" not in response.text


class TestCheckRequiredTables:

    def test_all_present(self, db_session):
        result = check_required_tables(db_session, REQUIRED_CREDENTIAL_TABLES)

        assert result.ready is True
        assert result.checked_tables == ["oauth_credentials"]

    def test_missing_reported(self, db_session):
        result = check_required_tables(db_session, ["oauth_credentials", "other_table"])

        assert result.ready is False
        assert result.missing_tables == ["other_table"]
