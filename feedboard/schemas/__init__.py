"""Pydantic schemas for request/response validation."""

from feedboard.schemas.board import (
    BoardCreate,
    BoardResponse,
    BoardUpdate,
    PairRequest,
    PairResult,
    TimeModeStatus,
    TimeModeUpdate,
)
from feedboard.schemas.common import Envelope, Timestamped, UTCDateTime, ok
from feedboard.schemas.diet import AMOUNT_FIELDS, AmountField, DietEntryResponse, DietEntryUpsert
from feedboard.schemas.events import (
    BoardSnapshot,
    DataEvent,
    DietEvent,
    FeedsEvent,
    FullEvent,
    HorsesEvent,
    PushEvent,
    PushEventType,
    StateEvent,
    parse_push_event,
)
from feedboard.schemas.feed import FeedCreate, FeedResponse, FeedUpdate
from feedboard.schemas.horse import HorseCreate, HorseResponse, HorseUpdate

__all__ = [
    # Common
    "Envelope",
    "Timestamped",
    "UTCDateTime",
    "ok",
    # Board
    "BoardCreate",
    "BoardUpdate",
    "BoardResponse",
    "TimeModeUpdate",
    "TimeModeStatus",
    "PairRequest",
    "PairResult",
    # Horse
    "HorseCreate",
    "HorseUpdate",
    "HorseResponse",
    # Feed
    "FeedCreate",
    "FeedUpdate",
    "FeedResponse",
    # Diet
    "AMOUNT_FIELDS",
    "AmountField",
    "DietEntryUpsert",
    "DietEntryResponse",
    # Push events
    "PushEventType",
    "PushEvent",
    "BoardSnapshot",
    "FullEvent",
    "StateEvent",
    "DataEvent",
    "HorsesEvent",
    "FeedsEvent",
    "DietEvent",
    "parse_push_event",
]
