"""
Health and readiness probes.

/health is a liveness check only. Readiness reports whether credentials
can be stored (tables exist), encrypted (keys valid) and authorized
(which providers have a client registration). Key values and client
secrets are never returned.
"""

from fastapi import APIRouter, Depends

from src.config.oauth import get_provider_settings
from src.credentials.encryption import validate_encryption_ready
from src.credentials.errors import EncryptionKeyError
from src.database.session import get_db_session
from src.integrations.oauth.providers import PROVIDER_ENDPOINTS
from src.platform.db_readiness import (
    REQUIRED_CREDENTIAL_TABLES,
    check_required_tables,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
async def readiness(db=Depends(get_db_session)):
    tables = check_required_tables(db, REQUIRED_CREDENTIAL_TABLES)
    try:
        encryption_ready = validate_encryption_ready()
    except EncryptionKeyError:
        encryption_ready = False

    configured_providers = sorted(
        provider.value
        for provider in PROVIDER_ENDPOINTS
        if get_provider_settings(provider.value) is not None
    )

    return {
        "status": "ready" if tables.ready and encryption_ready else "not_ready",
        "checks": {
            "credential_tables": {
                "required": tables.checked_tables,
                "missing": tables.missing_tables,
            },
            "encryption": "ok" if encryption_ready else "not_configured",
            "providers": configured_providers,
        },
    }
