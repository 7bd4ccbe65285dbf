"""Database schema readiness checks for critical runtime tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Tables the credential lifecycle cannot run without.
REQUIRED_CREDENTIAL_TABLES = (
    "oauth_credentials",
)


@dataclass(frozen=True)
class DBReadinessResult:
    """Result payload for DB schema readiness checks."""

    ready: bool
    missing_tables: list[str]
    checked_tables: list[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    """Check whether required tables exist in the bound database."""
    checked = list(required_tables)

    try:
        existing = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Failed listing database tables")
        raise

    missing = [table_name for table_name in checked if table_name not in existing]

    return DBReadinessResult(
        ready=len(missing) == 0,
        missing_tables=missing,
        checked_tables=checked,
    )
