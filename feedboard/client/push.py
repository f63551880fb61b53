"""Push channel client.

Consumes the server's text/event-stream channel for one board, validates
every frame against the push event schemas and applies it to the board's
stores with push authority.

All store updates from the push channel use ``UpdateSource.PUSH`` so they
take precedence over REST responses that may have been read earlier.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import assert_never

import httpx
from pydantic import ValidationError

from feedboard.client.policy import UpdateSource
from feedboard.client.stores import BoardState, CollectionStore
from feedboard.schemas import (
    DataEvent,
    DietEvent,
    FeedsEvent,
    FullEvent,
    HorsesEvent,
    PushEvent,
    StateEvent,
    parse_push_event,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5

RefetchHook = Callable[[str, str], Awaitable[object]]


class ConnectionState(StrEnum):
    """Lifecycle of the push connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    # Reconnection attempts exhausted or the server refused the stream
    FAILED = "failed"


def reconnect_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based): base, 2x, 4x, 8x, ..."""
    return base_delay * 2 ** (attempt - 1)


def _upsert_each(state: BoardState, store: CollectionStore, items: list | None, resource: str) -> str | None:
    if items is None:
        return resource
    with state.batch():
        for item in items:
            store.upsert(item, UpdateSource.PUSH)
    return None


def dispatch_event(state: BoardState, event: PushEvent) -> str | None:
    """Apply a validated push event to the board's stores.

    Only ``full`` events delete by omission; the granular events upsert.

    Returns:
        The resource to re-fetch over REST (``board``, ``horses``, ``feeds``,
        ``diet`` or ``all``) when the event carried no data, else None.
    """
    if isinstance(event, FullEvent):
        state.apply_snapshot(event.data, UpdateSource.PUSH)
        return None
    if isinstance(event, StateEvent):
        if event.data is None:
            return "board"
        state.board.set(event.data, UpdateSource.PUSH)
        return None
    if isinstance(event, DataEvent):
        return "all"
    if isinstance(event, HorsesEvent):
        return _upsert_each(state, state.horses, event.data, "horses")
    if isinstance(event, FeedsEvent):
        return _upsert_each(state, state.feeds, event.data, "feeds")
    if isinstance(event, DietEvent):
        return _upsert_each(state, state.diet, event.data, "diet")
    assert_never(event)


def _resolve(opened: asyncio.Future[bool], value: bool) -> None:
    # The waiting connect() may have been cancelled already
    if not opened.done():
        opened.set_result(value)


class EventStreamParser:
    """Incremental text/event-stream parser; yields the data of complete events."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if field == "data":
            self._data.append(value[1:] if value.startswith(" ") else value)
        # event/id/retry fields are not used by this channel
        return None


class PushClient:
    """Client for a board's push channel with exponential-backoff reconnects."""

    def __init__(
        self,
        base_url: str,
        state: BoardState,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        on_refetch: RefetchHook | None = None,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        on_auth_failure: Callable[[], None] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.board_state = state
        self.base_delay = base_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_attempts = 0
        self.reconnect_delays: list[float] = []
        self.keepalives_received = 0
        self._http = http_client
        self._owns_http = http_client is None
        self._on_refetch = on_refetch
        self._on_state_change = on_state_change
        self._on_auth_failure = on_auth_failure
        self._state = ConnectionState.DISCONNECTED
        self._board_id: str | None = None
        self._stream_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def board_id(self) -> str | None:
        return self._board_id

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        return self._http

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Push connection {self._state} -> {state}")
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    async def connect(self, board_id: str) -> bool:
        """Open the push channel for ``board_id``.

        Returns True once the server has confirmed the stream, False if this
        first attempt failed (a reconnect is then already scheduled unless the
        client gave up).
        """
        if self._stream_task is not None or self._reconnect_task is not None:
            await self.disconnect()
        self._board_id = board_id
        return await self._open()

    async def _open(self) -> bool:
        board_id = self._board_id
        if board_id is None:
            return False
        opened: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._set_state(ConnectionState.CONNECTING)
        self._stream_task = asyncio.create_task(self._run(board_id, opened))
        return await opened

    async def _run(self, board_id: str, opened: asyncio.Future[bool]) -> None:
        url = f"{self.base_url}/api/boards/{board_id}/events"
        try:
            async with self._client().stream(
                "GET", url, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.status_code in (401, 403):
                    logger.warning(f"Push channel for board {board_id} refused: {response.status_code}")
                    _resolve(opened, False)
                    self._set_state(ConnectionState.FAILED)
                    if self._on_auth_failure:
                        self._on_auth_failure()
                    return
                response.raise_for_status()

                self.reconnect_attempts = 0
                self.reconnect_delays = []
                self._set_state(ConnectionState.CONNECTED)
                logger.info(f"Push channel connected: board={board_id}")
                _resolve(opened, True)

                parser = EventStreamParser()
                async for line in response.aiter_lines():
                    if line.startswith(":"):
                        self.keepalives_received += 1
                        continue
                    payload = parser.feed(line)
                    if payload is None:
                        continue
                    try:
                        await self.handle_message(payload)
                    except Exception as e:
                        # A failing store listener must not end the stream
                        logger.error(f"Failed to apply push frame for board {board_id}: {e}", exc_info=True)

            logger.warning(f"Push channel for board {board_id} closed by server")
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            logger.warning(f"Push channel error for board {board_id}: {e}")
        finally:
            _resolve(opened, False)

        self._connection_lost()

    async def handle_message(self, payload: str) -> bool:
        """Validate and apply one frame payload. Malformed frames are dropped."""
        try:
            event = parse_push_event(payload)
        except ValidationError as e:
            logger.warning(f"Dropped malformed push frame ({e.error_count()} error(s)): {payload[:200]}")
            return False

        resource = dispatch_event(self.board_state, event)
        if resource is not None and self._on_refetch and self._board_id:
            try:
                await self._on_refetch(self._board_id, resource)
            except Exception as e:
                logger.error(f"Re-fetch of {resource} failed: {e}", exc_info=True)
        return True

    def _connection_lost(self) -> None:
        if self._board_id is None:
            return
        self._set_state(ConnectionState.ERROR)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(f"Max reconnection attempts reached for board {self._board_id}")
            self._set_state(ConnectionState.FAILED)
            return

        self.reconnect_attempts += 1
        delay = reconnect_delay(self.reconnect_attempts, self.base_delay)
        self.reconnect_delays.append(delay)
        logger.info(f"Reconnecting in {delay:.2f}s (attempt {self.reconnect_attempts})")
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._open()

    async def disconnect(self) -> None:
        """Close the channel and cancel any pending reconnect. Idempotent."""
        self._board_id = None
        self.reconnect_attempts = 0
        self.reconnect_delays = []

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._reconnect_task, self._stream_task)
            if task is not None and task is not current and not task.done()
        ]
        self._reconnect_task = None
        self._stream_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._set_state(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client if this instance created it."""
        await self.disconnect()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
