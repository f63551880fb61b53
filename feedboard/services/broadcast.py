"""Push channel fan-out to the streaming connections of each board."""

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from pydantic import BaseModel

from feedboard.services.timers import PeriodicTask

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"
DEFAULT_MAX_PENDING_FRAMES = 256

Event = BaseModel | dict[str, Any]


def format_frame(event: Event) -> str:
    """Serialize an event as one ``data:`` frame."""
    if isinstance(event, BaseModel):
        payload = event.model_dump_json()
    else:
        payload = json.dumps(event, default=str)
    return f"data: {payload}\n\n"


class Connection(Protocol):
    """One subscriber's write handle."""

    def write(self, frame: str) -> None: ...

    def close(self) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None: ...


class QueueConnection:
    """Connection backed by an asyncio queue on the server loop.

    ``write`` may be called from any thread (sync routes run in the
    threadpool). ``stream()`` feeds a StreamingResponse; when the response
    ends, for whatever reason, the close callbacks run. A subscriber with
    ``max_pending`` unsent frames is too slow: further writes raise so the
    broadcast manager drops it.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        max_pending: int = DEFAULT_MAX_PENDING_FRAMES,
    ):
        self._loop = loop or asyncio.get_running_loop()
        self.max_pending = max_pending
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self._close_callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item: str | None) -> None:
        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            self._queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def write(self, frame: str) -> None:
        if self._closed:
            raise ConnectionError("connection is closed")
        if self._queue.qsize() >= self.max_pending:
            raise ConnectionError(f"subscriber is {self.max_pending} frames behind")
        self._put(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._put(None)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    async def stream(self) -> AsyncIterator[str]:
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self._closed = True
            for callback in self._close_callbacks:
                callback()


class BroadcastManager:
    """Registry of push connections per board.

    Safe to call from request threads and the event loop alike: the registry
    is guarded by a lock, writes happen on a copy of the connection list.
    """

    def __init__(self) -> None:
        self._clients: dict[str, set[Connection]] = {}
        self._lock = threading.Lock()
        self._keepalive: PeriodicTask | None = None
        self.stats = {"broadcasts": 0, "frames_sent": 0, "failed_writes": 0, "keepalives": 0}

    def add_client(
        self,
        board_id: str,
        connection: Connection,
        initial: Event | Callable[[], Event | None] | None = None,
    ) -> None:
        """Register a connection, writing the initial snapshot first.

        ``initial`` may be a callable; it is evaluated while the registry is
        locked, so no broadcast can reach the connection before its snapshot
        and no write committed after the snapshot was read can be missed.

        Raises:
            ConnectionError (or whatever the connection raises) if the
            initial write fails; the connection is then not registered.
        """
        with self._lock:
            event = initial() if callable(initial) else initial
            if event is not None:
                connection.write(format_frame(event))
            self._clients.setdefault(board_id, set()).add(connection)
            count = len(self._clients[board_id])

        connection.on_close(lambda: self.remove_client(board_id, connection))
        logger.info(f"Push client connected: board={board_id} clients={count}")

    def remove_client(self, board_id: str, connection: Connection) -> bool:
        with self._lock:
            connections = self._clients.get(board_id)
            if not connections or connection not in connections:
                return False
            connections.discard(connection)
            if not connections:
                del self._clients[board_id]
        logger.info(f"Push client disconnected: board={board_id}")
        return True

    def _connections(self, board_id: str | None = None) -> list[tuple[str, Connection]]:
        with self._lock:
            if board_id is not None:
                return [(board_id, c) for c in self._clients.get(board_id, ())]
            return [(b, c) for b, conns in self._clients.items() for c in conns]

    def _write_all(self, targets: list[tuple[str, Connection]], frame: str) -> int:
        sent = 0
        for board_id, connection in targets:
            try:
                connection.write(frame)
                sent += 1
            except Exception as e:
                self.stats["failed_writes"] += 1
                logger.warning(f"Dropping push client of board {board_id}: {e}")
                self.remove_client(board_id, connection)
                self._close(board_id, connection)
        return sent

    def _close(self, board_id: str, connection: Connection) -> None:
        try:
            connection.close()
        except Exception as e:
            logger.warning(f"Error closing push client of board {board_id}: {e}")

    def broadcast(self, board_id: str, event: Event) -> int:
        """Send an event to every connection of a board.

        Returns:
            Number of connections the frame was written to.
        """
        targets = self._connections(board_id)
        if not targets:
            return 0
        sent = self._write_all(targets, format_frame(event))
        self.stats["broadcasts"] += 1
        self.stats["frames_sent"] += sent
        logger.debug(f"Broadcast to board {board_id}: {sent}/{len(targets)} clients")
        return sent

    def send_keepalive(self) -> int:
        """Write a keepalive comment to every connection of every board."""
        sent = self._write_all(self._connections(), KEEPALIVE_FRAME)
        self.stats["keepalives"] += 1
        return sent

    async def _keepalive_tick(self) -> None:
        self.send_keepalive()

    def start(self, keepalive_interval: float = 30.0) -> None:
        if self._keepalive is None:
            self._keepalive = PeriodicTask("keepalive", keepalive_interval, self._keepalive_tick)
        self._keepalive.start()

    async def shutdown(self) -> None:
        """Stop the keepalive and close every connection."""
        if self._keepalive is not None:
            await self._keepalive.stop()
            self._keepalive = None
        for board_id, connection in self._connections():
            self._close(board_id, connection)
        with self._lock:
            self._clients.clear()

    def client_count(self, board_id: str) -> int:
        with self._lock:
            return len(self._clients.get(board_id, ()))

    def total_client_count(self) -> int:
        with self._lock:
            return sum(len(conns) for conns in self._clients.values())

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            boards = len(self._clients)
        return {**self.stats, "boards": boards, "clients": self.total_client_count()}
