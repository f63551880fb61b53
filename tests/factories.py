"""Builders and fakes shared by the tests."""

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from feedboard.schemas import (
    BoardResponse,
    DietEntryResponse,
    FeedResponse,
    HorseResponse,
    parse_push_event,
)

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def ts(seconds: float = 0) -> datetime:
    """A fixed point in time, offset by ``seconds``."""
    return BASE_TIME + timedelta(seconds=seconds)


class RecordingConnection:
    """Push connection that keeps every frame written to it."""

    def __init__(self) -> None:
        self.frames: list[str] = []
        self.closed = False
        self._close_callbacks: list[Callable[[], None]] = []

    def write(self, frame: str) -> None:
        if self.closed:
            raise ConnectionError("closed")
        self.frames.append(frame)

    def close(self) -> None:
        self.closed = True

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def disconnect(self) -> None:
        """Simulate the client going away."""
        self.closed = True
        for callback in self._close_callbacks:
            callback()

    @property
    def events(self) -> list:
        """Parsed push events, keepalives skipped."""
        return [
            parse_push_event(frame.removeprefix("data: ").strip())
            for frame in self.frames
            if frame.startswith("data: ")
        ]

    @property
    def payloads(self) -> list[dict]:
        return [
            json.loads(frame.removeprefix("data: ")) for frame in self.frames if frame.startswith("data: ")
        ]


def make_board(updated: float = 0, **fields) -> BoardResponse:
    data = {
        "id": "b_1",
        "pair_code": "123456",
        "timezone": "UTC",
        "time_mode": "AUTO",
        "created_at": ts(),
        "updated_at": ts(updated),
    }
    data.update(fields)
    return BoardResponse.model_validate(data)


def make_horse(horse_id: str = "h_1", updated: float = 0, **fields) -> HorseResponse:
    data = {
        "id": horse_id,
        "board_id": "b_1",
        "name": horse_id.upper(),
        "created_at": ts(),
        "updated_at": ts(updated),
    }
    data.update(fields)
    return HorseResponse.model_validate(data)


def make_feed(feed_id: str = "f_1", updated: float = 0, **fields) -> FeedResponse:
    data = {
        "id": feed_id,
        "board_id": "b_1",
        "name": feed_id.upper(),
        "unit": "scoop",
        "created_at": ts(),
        "updated_at": ts(updated),
    }
    data.update(fields)
    return FeedResponse.model_validate(data)


def make_entry(
    horse_id: str = "h_1", feed_id: str = "f_1", updated: float = 0, **fields
) -> DietEntryResponse:
    data = {
        "horse_id": horse_id,
        "feed_id": feed_id,
        "created_at": ts(),
        "updated_at": ts(updated),
    }
    data.update(fields)
    return DietEntryResponse.model_validate(data)
