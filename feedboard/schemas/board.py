"""Board schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from feedboard.models.enums import TimeMode
from feedboard.schemas.common import Timestamped, UTCDateTime
from feedboard.timemode import validate_timezone


class BoardCreate(BaseModel):
    """Create a new board."""

    timezone: str = Field("UTC", min_length=1, max_length=64)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return validate_timezone(value)


class BoardUpdate(BaseModel):
    """Update board display settings."""

    timezone: str | None = Field(None, min_length=1, max_length=64)
    zoom_level: int | None = Field(None, ge=1, le=3)
    current_page: int | None = Field(None, ge=0)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return validate_timezone(value)


class TimeModeUpdate(BaseModel):
    """Set (or clear) a time-mode override."""

    time_mode: TimeMode
    override_until: UTCDateTime | None = None


class BoardResponse(Timestamped):
    """Board response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    pair_code: str
    timezone: str
    time_mode: TimeMode
    override_until: UTCDateTime | None = None
    zoom_level: int = 2
    current_page: int = 0


class TimeModeStatus(BaseModel):
    """Configured and effective time mode of a board."""

    time_mode: TimeMode
    effective_time_mode: TimeMode
    override_until: UTCDateTime | None = None


class PairRequest(BaseModel):
    """Redeem a pairing code."""

    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class PairResult(BaseModel):
    """Board a pairing code resolved to."""

    board_id: str
