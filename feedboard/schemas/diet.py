"""Diet entry schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from feedboard.schemas.common import Timestamped

AmountField = Literal["am_amount", "pm_amount"]
AMOUNT_FIELDS: tuple[str, ...] = ("am_amount", "pm_amount")


class DietEntryUpsert(BaseModel):
    """Upsert a diet entry.

    Only the amount fields present in the request are written; sending both
    as null removes the entry.
    """

    horse_id: str = Field(..., min_length=1)
    feed_id: str = Field(..., min_length=1)
    am_amount: float | None = Field(None, ge=0)
    pm_amount: float | None = Field(None, ge=0)


class DietEntryResponse(Timestamped):
    """Diet entry response."""

    model_config = ConfigDict(from_attributes=True)

    horse_id: str
    feed_id: str
    am_amount: float | None = Field(None, ge=0)
    pm_amount: float | None = Field(None, ge=0)

    @property
    def key(self) -> str:
        """Composite key, ``horse_id:feed_id``."""
        return f"{self.horse_id}:{self.feed_id}"

    @property
    def is_active(self) -> bool:
        """At least one non-null, non-zero amount."""
        return bool(self.am_amount) or bool(self.pm_amount)
