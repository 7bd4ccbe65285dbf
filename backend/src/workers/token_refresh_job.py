"""
Token refresh job - cron job for proactively refreshing OAuth access tokens.

Runs every few minutes and refreshes grants whose access token expires
within TOKEN_REFRESH_WINDOW_MINUTES, so interactive callers rarely hit an
expired token. Uses the same single-flight refresh path as
TokenLifecycleManager.get_valid_access_token().

CONSTRAINTS:
- Operates across all users
- Respects TOKEN_REFRESH_DRY_RUN for safe rollout
- Best-effort: one failed grant never stops the batch
- No token values are logged

Run as a cron job:
    python -m src.workers.token_refresh_job
"""

import asyncio
import os
import sys
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from src.credentials.refresh import DEFAULT_REFRESH_WINDOW_MINUTES, RefreshResult, RefreshResultStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Configurable via environment variables
TOKEN_REFRESH_DRY_RUN = (
    os.getenv("TOKEN_REFRESH_DRY_RUN", "true").lower() == "true"
)
TOKEN_REFRESH_WINDOW_MINUTES = int(
    os.getenv("TOKEN_REFRESH_WINDOW_MINUTES", str(DEFAULT_REFRESH_WINDOW_MINUTES))
)


@dataclass
class RefreshJobStats:
    """Statistics from a token refresh run."""

    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    window_minutes: int = TOKEN_REFRESH_WINDOW_MINUTES
    credentials_eligible: int = 0
    credentials_refreshed: int = 0
    credentials_would_refresh: int = 0
    credentials_skipped: int = 0
    credentials_failed: int = 0
    dry_run: bool = TOKEN_REFRESH_DRY_RUN
    errors: list = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def record(self, results: List[RefreshResult]) -> None:
        self.credentials_eligible = len(results)
        for result in results:
            if result.status == RefreshResultStatus.SUCCESS:
                self.credentials_refreshed += 1
            elif result.status == RefreshResultStatus.WOULD_REFRESH:
                self.credentials_would_refresh += 1
            elif result.status == RefreshResultStatus.FAILED:
                self.credentials_failed += 1
                self.errors.append(
                    f"{result.provider}:{result.credential_id}: {result.error_message}"
                )
            else:
                self.credentials_skipped += 1

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "window_minutes": self.window_minutes,
            "credentials_eligible": self.credentials_eligible,
            "credentials_refreshed": self.credentials_refreshed,
            "credentials_would_refresh": self.credentials_would_refresh,
            "credentials_skipped": self.credentials_skipped,
            "credentials_failed": self.credentials_failed,
            "dry_run": self.dry_run,
            "error_count": len(self.errors),
            "duration_seconds": duration,
        }


def _build_manager(db_session: Session):
    from src.config.oauth import get_redis_url, get_state_backend, get_state_ttl_seconds
    from src.credentials.encryption import CredentialCipher
    from src.credentials.lifecycle import TokenLifecycleManager
    from src.credentials.refresh import RefreshCoordinator
    from src.credentials.state import build_state_store
    from src.credentials.store import CredentialStore
    from src.integrations.oauth.client import ProviderClientRegistry

    backend = get_state_backend()
    return TokenLifecycleManager(
        store=CredentialStore(db_session),
        state_store=build_state_store(
            backend,
            ttl=timedelta(seconds=get_state_ttl_seconds()),
            redis_url=get_redis_url() if backend == "redis" else None,
        ),
        cipher=CredentialCipher(),
        clients=ProviderClientRegistry(),
        refresh_coordinator=RefreshCoordinator(),
    )


async def run_refresh(
    manager,
    window_minutes: int = TOKEN_REFRESH_WINDOW_MINUTES,
    dry_run: bool = TOKEN_REFRESH_DRY_RUN,
) -> RefreshJobStats:
    """
    Refresh every grant expiring within the window.

    Args:
        manager: TokenLifecycleManager bound to a cross-user session
        window_minutes: Refresh credentials expiring within this window
        dry_run: If True, only count without calling providers

    Returns:
        RefreshJobStats with results
    """
    stats = RefreshJobStats(window_minutes=window_minutes, dry_run=dry_run)

    results = await manager.refresh_expiring_credentials(
        timedelta(minutes=window_minutes), dry_run=dry_run
    )
    stats.record(results)

    if dry_run:
        logger.info(
            "[DRY RUN] Would refresh %d credentials",
            stats.credentials_would_refresh,
        )

    stats.completed_at = datetime.now(timezone.utc)
    return stats


async def _run(db_session: Session) -> RefreshJobStats:
    manager = _build_manager(db_session)
    try:
        return await run_refresh(manager)
    finally:
        await manager.clients.aclose()


def main():
    """Entry point for token refresh job."""
    from src.credentials.encryption import validate_encryption_ready
    from src.credentials.redaction import setup_credential_logging
    from src.database.session import get_session_factory

    setup_credential_logging()
    logger.info(
        "Token Refresh Job starting",
        extra={
            "dry_run": TOKEN_REFRESH_DRY_RUN,
            "window_minutes": TOKEN_REFRESH_WINDOW_MINUTES,
        },
    )

    session = None
    try:
        validate_encryption_ready()
        session = get_session_factory()()
        stats = asyncio.run(_run(session))
        logger.info("Token Refresh Job stats", extra=stats.to_dict())
    except Exception as exc:
        logger.error(
            "Token Refresh Job failed",
            extra={"error_type": type(exc).__name__},
            exc_info=True,
        )
        sys.exit(1)
    finally:
        if session is not None:
            session.close()

    logger.info("Token Refresh Job finished")


if __name__ == "__main__":
    main()
