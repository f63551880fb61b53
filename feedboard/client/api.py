"""REST client for the board API.

Writes are applied optimistically to the local stores first (``LOCAL``
source), then confirmed with the server's response (``API`` source). Either
may later be overridden by the push channel.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from feedboard.client.policy import UpdateSource
from feedboard.client.stores import BoardState
from feedboard.models.enums import FeedUnit, TimeMode
from feedboard.schemas import (
    AMOUNT_FIELDS,
    BoardResponse,
    BoardSnapshot,
    DietEntryResponse,
    FeedResponse,
    HorseResponse,
    PairResult,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A REST call failed."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or response.reason_phrase)
    return response.reason_phrase


def _jsonable(changes: dict[str, Any]) -> dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in changes.items()}


class ApiClient:
    """Typed wrapper around the board REST endpoints."""

    def __init__(
        self,
        base_url: str,
        state: BoardState,
        *,
        http_client: httpx.AsyncClient | None = None,
        on_auth_failure: Callable[[], None] | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.state = state
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self._on_auth_failure = on_auth_failure

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        """Send a request and unwrap the ``{success, data}`` envelope.

        Raises:
            ApiError: on transport errors, non-2xx responses or an envelope
                with ``success: false``.
        """
        try:
            response = await self._http.request(method, f"{self.base_url}{path}", json=json)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            logger.warning(f"{method} {path} refused: {response.status_code}")
            if self._on_auth_failure:
                self._on_auth_failure()
            raise ApiError(_error_message(response), response.status_code)

        if response.is_error:
            raise ApiError(_error_message(response), response.status_code)

        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise ApiError(str(body.get("error") or "Request failed"), response.status_code)
            return body.get("data")
        return body

    # Boards

    async def create_board(self, timezone: str = "UTC") -> BoardResponse:
        data = await self._request("POST", "/api/boards", {"timezone": timezone})
        board = BoardResponse.model_validate(data)
        self.state.board.set(board, UpdateSource.API)
        return board

    async def get_board(self, board_id: str) -> BoardResponse:
        board = BoardResponse.model_validate(await self._request("GET", f"/api/boards/{board_id}"))
        self.state.board.set(board, UpdateSource.API)
        return board

    async def update_board(self, board_id: str, **changes: Any) -> BoardResponse:
        self.state.board.update(changes, UpdateSource.LOCAL)
        data = await self._request("PATCH", f"/api/boards/{board_id}", _jsonable(changes))
        board = BoardResponse.model_validate(data)
        self.state.board.set(board, UpdateSource.API)
        return board

    async def set_time_mode(
        self, board_id: str, mode: TimeMode | str, override_until: datetime | None = None
    ) -> BoardResponse:
        mode = TimeMode(mode)
        self.state.board.update_time_mode(mode, override_until)
        payload = _jsonable({"time_mode": mode.value, "override_until": override_until})
        data = await self._request("PUT", f"/api/boards/{board_id}/time-mode", payload)
        board = BoardResponse.model_validate(data)
        self.state.board.set(board, UpdateSource.API)
        return board

    async def clear_time_mode(self, board_id: str) -> BoardResponse:
        self.state.board.update_time_mode(TimeMode.AUTO)
        data = await self._request("DELETE", f"/api/boards/{board_id}/time-mode")
        board = BoardResponse.model_validate(data)
        self.state.board.set(board, UpdateSource.API)
        return board

    async def bootstrap(self, board_id: str) -> BoardSnapshot:
        """Load the full board over REST and merge it into the stores."""
        data = await self._request("GET", f"/api/boards/{board_id}/snapshot")
        snapshot = BoardSnapshot.model_validate(data)
        self.state.apply_snapshot(snapshot, UpdateSource.API)
        return snapshot

    async def pair(self, code: str) -> str:
        """Redeem a pairing code; returns the board id."""
        data = await self._request("POST", "/api/pair", {"code": code})
        return PairResult.model_validate(data).board_id

    async def recalculate_rankings(self, board_id: str) -> list[FeedResponse]:
        data = await self._request("POST", f"/api/boards/{board_id}/feeds/recalculate-rankings")
        feeds = [FeedResponse.model_validate(f) for f in data]
        self.state.feeds.reconcile(feeds, UpdateSource.API)
        return feeds

    # Horses

    async def list_horses(self, board_id: str) -> list[HorseResponse]:
        data = await self._request("GET", f"/api/boards/{board_id}/horses")
        horses = [HorseResponse.model_validate(h) for h in data]
        self.state.horses.reconcile(horses, UpdateSource.API)
        return horses

    async def create_horse(
        self,
        board_id: str,
        name: str,
        note: str | None = None,
        note_expiry: datetime | None = None,
    ) -> HorseResponse:
        payload = _jsonable({"name": name, "note": note, "note_expiry": note_expiry})
        data = await self._request("POST", f"/api/boards/{board_id}/horses", payload)
        horse = HorseResponse.model_validate(data)
        self.state.horses.add(horse, UpdateSource.API)
        return horse

    async def update_horse(self, horse_id: str, **changes: Any) -> HorseResponse:
        self.state.horses.update(horse_id, changes, UpdateSource.LOCAL)
        data = await self._request("PATCH", f"/api/horses/{horse_id}", _jsonable(changes))
        horse = HorseResponse.model_validate(data)
        self.state.horses.upsert(horse, UpdateSource.API)
        return horse

    async def delete_horse(self, horse_id: str) -> None:
        with self.state.batch():
            self.state.horses.remove(horse_id, UpdateSource.LOCAL)
            for entry in self.state.diet.by_horse(horse_id):
                self.state.diet.remove(entry.key, UpdateSource.LOCAL)
        await self._request("DELETE", f"/api/horses/{horse_id}")

    # Feeds

    async def list_feeds(self, board_id: str) -> list[FeedResponse]:
        data = await self._request("GET", f"/api/boards/{board_id}/feeds")
        feeds = [FeedResponse.model_validate(f) for f in data]
        self.state.feeds.reconcile(feeds, UpdateSource.API)
        return feeds

    async def create_feed(
        self, board_id: str, name: str, unit: FeedUnit | str = FeedUnit.SCOOP
    ) -> FeedResponse:
        payload = {"name": name, "unit": FeedUnit(unit).value}
        data = await self._request("POST", f"/api/boards/{board_id}/feeds", payload)
        feed = FeedResponse.model_validate(data)
        self.state.feeds.add(feed, UpdateSource.API)
        return feed

    async def update_feed(self, feed_id: str, **changes: Any) -> FeedResponse:
        self.state.feeds.update(feed_id, changes, UpdateSource.LOCAL)
        data = await self._request("PATCH", f"/api/feeds/{feed_id}", _jsonable(changes))
        feed = FeedResponse.model_validate(data)
        self.state.feeds.upsert(feed, UpdateSource.API)
        return feed

    async def delete_feed(self, feed_id: str) -> None:
        with self.state.batch():
            self.state.feeds.remove(feed_id, UpdateSource.LOCAL)
            for entry in self.state.diet.by_feed(feed_id):
                self.state.diet.remove(entry.key, UpdateSource.LOCAL)
        await self._request("DELETE", f"/api/feeds/{feed_id}")

    # Diet

    async def list_diet(self, board_id: str) -> list[DietEntryResponse]:
        data = await self._request("GET", f"/api/boards/{board_id}/diet")
        entries = [DietEntryResponse.model_validate(e) for e in data]
        self.state.diet.reconcile(entries, UpdateSource.API)
        return entries

    async def set_diet_amount(
        self, horse_id: str, feed_id: str, field: str, value: float | None
    ) -> DietEntryResponse | None:
        """Write one amount of a diet entry.

        Returns the stored entry, or None when the server removed it because
        both amounts are now null.
        """
        if field not in AMOUNT_FIELDS:
            raise ValueError(f"Unknown diet amount field: {field}")
        self.state.diet.update_amount(horse_id, feed_id, field, value, UpdateSource.LOCAL)

        payload = {"horse_id": horse_id, "feed_id": feed_id, field: value}
        data = await self._request("PUT", "/api/diet", payload)
        if data is None:
            self.state.diet.remove_entry(horse_id, feed_id, UpdateSource.API)
            return None
        entry = DietEntryResponse.model_validate(data)
        self.state.diet.upsert(entry, UpdateSource.API)
        return entry

    async def refetch(self, board_id: str, resource: str) -> None:
        """Re-fetch one resource; fits ``PushClient(on_refetch=...)``."""
        logger.debug(f"Re-fetching {resource} for board {board_id}")
        if resource == "board":
            await self.get_board(board_id)
        elif resource == "horses":
            await self.list_horses(board_id)
        elif resource == "feeds":
            await self.list_feeds(board_id)
        elif resource == "diet":
            await self.list_diet(board_id)
        elif resource == "all":
            await self.bootstrap(board_id)
        else:
            raise ValueError(f"Unknown resource: {resource}")
