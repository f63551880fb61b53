"""Mixins for SQLAlchemy models."""

import secrets
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def generate_id(prefix: str) -> str:
    """Generate a prefixed random identifier, e.g. ``h_3f9c0a1b2d4e``."""
    return f"{prefix}_{secrets.token_hex(6)}"


class TimestampMixin:
    """Mixin to add created_at and updated_at timestamp columns.

    Timestamps are stamped in Python rather than by the database so they keep
    microsecond precision on every backend; clients order writes by them.
    """

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
