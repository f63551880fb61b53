"""Shared schema types."""

from datetime import UTC, datetime
from typing import Annotated, Any, Generic, TypeVar

from pydantic import AfterValidator, BaseModel

T = TypeVar("T")


def _ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UTCDateTime = Annotated[datetime, AfterValidator(_ensure_utc)]


class Timestamped(BaseModel):
    """Fields shared by every synchronized entity."""

    created_at: UTCDateTime
    updated_at: UTCDateTime


class Envelope(BaseModel, Generic[T]):
    """Response envelope used by every REST endpoint."""

    success: bool = True
    data: T | None = None
    error: str | None = None


def ok(data: Any = None) -> dict[str, Any]:
    """Build a success envelope."""
    return {"success": True, "data": data}
