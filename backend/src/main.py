"""
FastAPI application for the OAuth credential service.

Startup:
- Installs the credential redaction filter on logging
- Fails fast if ENCRYPTION_KEY_CURRENT is missing or malformed

Run locally:
    uvicorn src.main:app --app-dir backend --reload
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.dependencies.oauth import close_oauth_dependencies
from src.api.routes import health, oauth
from src.credentials.encryption import validate_encryption_ready
from src.credentials.redaction import setup_credential_logging
from src.platform.errors import register_error_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: validate configuration, release clients on shutdown."""
    setup_credential_logging()
    validate_encryption_ready()
    logger.info("Credential service started")

    yield

    await close_oauth_dependencies()
    logger.info("Credential service stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    debug = os.getenv("DEBUG", "false").lower() == "true"

    app = FastAPI(
        title="OAuth Credential Service",
        description="Issues, stores, refreshes and revokes third-party OAuth2 credentials",
        version="1.0.0",
        docs_url="/docs" if debug else None,
        redoc_url="/redoc" if debug else None,
        lifespan=lifespan,
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(oauth.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "src.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "false").lower() == "true",
    )
