"""Horse schemas."""

from pydantic import BaseModel, ConfigDict, Field

from feedboard.schemas.common import Timestamped, UTCDateTime


class HorseCreate(BaseModel):
    """Create a new horse."""

    name: str = Field(..., min_length=1, max_length=50)
    note: str | None = Field(None, max_length=200)
    note_expiry: UTCDateTime | None = None


class HorseUpdate(BaseModel):
    """Update a horse. Only fields present in the request are applied."""

    name: str | None = Field(None, min_length=1, max_length=50)
    note: str | None = Field(None, max_length=200)
    note_expiry: UTCDateTime | None = None
    archived: bool | None = None


class HorseResponse(Timestamped):
    """Horse response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    board_id: str
    name: str
    note: str | None = None
    note_expiry: UTCDateTime | None = None
    archived: bool = False
