"""Push channel event schemas.

Every frame on the push channel carries one of these events. The ``type``
field is the discriminator, so validation yields a concrete event class and
dispatchers can branch on it exhaustively.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from feedboard.schemas.board import BoardResponse
from feedboard.schemas.common import UTCDateTime
from feedboard.schemas.diet import DietEntryResponse
from feedboard.schemas.feed import FeedResponse
from feedboard.schemas.horse import HorseResponse


class PushEventType(StrEnum):
    """Event types sent on the push channel."""

    FULL = "full"
    STATE = "state"
    DATA = "data"
    HORSES = "horses"
    FEEDS = "feeds"
    DIET = "diet"


def _now() -> datetime:
    return datetime.now(UTC)


class BoardSnapshot(BaseModel):
    """Complete state of one board."""

    board: BoardResponse
    horses: list[HorseResponse] = Field(default_factory=list)
    feeds: list[FeedResponse] = Field(default_factory=list)
    diet_entries: list[DietEntryResponse] = Field(default_factory=list)


class _PushEvent(BaseModel):
    timestamp: UTCDateTime = Field(default_factory=_now)


class FullEvent(_PushEvent):
    """Complete snapshot; receivers delete anything it does not list."""

    type: Literal["full"] = "full"
    data: BoardSnapshot


class StateEvent(_PushEvent):
    """Board configuration changed. Without data, re-fetch the board."""

    type: Literal["state"] = "state"
    data: BoardResponse | None = None


class DataEvent(_PushEvent):
    """Something changed; re-fetch everything."""

    type: Literal["data"] = "data"
    data: None = None


class HorsesEvent(_PushEvent):
    """Horses changed. Upsert-only; without data, re-fetch horses."""

    type: Literal["horses"] = "horses"
    data: list[HorseResponse] | None = None


class FeedsEvent(_PushEvent):
    """Feeds changed. Upsert-only; without data, re-fetch feeds."""

    type: Literal["feeds"] = "feeds"
    data: list[FeedResponse] | None = None


class DietEvent(_PushEvent):
    """Diet entries changed. Upsert-only; without data, re-fetch diet."""

    type: Literal["diet"] = "diet"
    data: list[DietEntryResponse] | None = None


PushEvent = Annotated[
    FullEvent | StateEvent | DataEvent | HorsesEvent | FeedsEvent | DietEvent,
    Field(discriminator="type"),
]

push_event_adapter: TypeAdapter[PushEvent] = TypeAdapter(PushEvent)


def parse_push_event(raw: str | bytes) -> PushEvent:
    """Parse and validate one JSON payload.

    Raises:
        pydantic.ValidationError: if the payload is not valid JSON or does not
            match any event shape.
    """
    return push_event_adapter.validate_json(raw)
