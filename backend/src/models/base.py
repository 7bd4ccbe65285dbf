"""
Shared model mixins.

TimestampMixin maintains created_at/updated_at on every write so the
credential store never has to set them by hand.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Adds created_at and updated_at columns maintained on insert/update."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="When the row was created",
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="When the row was last modified",
    )
