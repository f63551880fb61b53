"""Deterministic arbitration between competing writes.

A client's stores receive writes from three places: optimistic local edits,
REST responses and the server's push stream. This module decides which one
wins for a given entity. It contains no store bookkeeping.
"""

from datetime import datetime
from enum import StrEnum
from typing import Protocol


class UpdateSource(StrEnum):
    """Where a store mutation came from. Never persisted."""

    API = "api"
    PUSH = "push"
    LOCAL = "local"


class HasUpdatedAt(Protocol):
    updated_at: datetime


def should_replace(
    existing: HasUpdatedAt | None,
    incoming: HasUpdatedAt,
    source: UpdateSource,
) -> bool:
    """Decide whether ``incoming`` replaces ``existing``.

    Policy:
    - Push is authoritative and always wins, even with an older timestamp.
      The server reads what it pushes strictly after committing the write it
      describes, so a push can never carry state older than the server's.
    - Anything wins over nothing.
    - Otherwise the newer ``updated_at`` wins; ties go to the incoming write
      so re-applying the same value is idempotent.
    """
    if source == UpdateSource.PUSH:
        return True
    if existing is None:
        return True
    return incoming.updated_at >= existing.updated_at
