"""Feed schemas."""

from pydantic import BaseModel, ConfigDict, Field

from feedboard.models.enums import FeedUnit
from feedboard.schemas.common import Timestamped


class FeedCreate(BaseModel):
    """Create a new feed."""

    name: str = Field(..., min_length=1, max_length=50)
    unit: FeedUnit = FeedUnit.SCOOP


class FeedUpdate(BaseModel):
    """Update a feed."""

    name: str | None = Field(None, min_length=1, max_length=50)
    unit: FeedUnit | None = None
    stock_level: float | None = Field(None, ge=0)
    low_stock_threshold: float | None = Field(None, ge=0)


class FeedResponse(Timestamped):
    """Feed response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    board_id: str
    name: str
    unit: FeedUnit
    rank: int = Field(0, ge=0)
    stock_level: float = Field(0, ge=0)
    low_stock_threshold: float = Field(0, ge=0)
