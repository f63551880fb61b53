"""Board snapshots and their publication on the push channel."""

import logging
import threading
from collections.abc import Callable, Iterable

from sqlalchemy.orm import Session

from feedboard.models import Board, DietEntry, Feed, Horse
from feedboard.schemas import (
    BoardResponse,
    BoardSnapshot,
    DietEntryResponse,
    FeedResponse,
    FullEvent,
    HorseResponse,
)
from feedboard.services.broadcast import BroadcastManager, Connection

logger = logging.getLogger(__name__)


def load_snapshot(db: Session, board_id: str) -> BoardSnapshot | None:
    """Read the complete state of a board, or None if it does not exist."""
    board = db.query(Board).filter(Board.id == board_id).first()
    if not board:
        return None

    horses = (
        db.query(Horse).filter(Horse.board_id == board_id).order_by(Horse.created_at, Horse.id).all()
    )
    feeds = db.query(Feed).filter(Feed.board_id == board_id).order_by(Feed.position, Feed.id).all()
    diet_entries = (
        db.query(DietEntry)
        .join(Horse, DietEntry.horse_id == Horse.id)
        .filter(Horse.board_id == board_id)
        .order_by(DietEntry.horse_id, DietEntry.feed_id)
        .all()
    )

    return BoardSnapshot(
        board=BoardResponse.model_validate(board),
        horses=[HorseResponse.model_validate(h) for h in horses],
        feeds=[FeedResponse.model_validate(f) for f in feeds],
        diet_entries=[DietEntryResponse.model_validate(e) for e in diet_entries],
    )


class BoardPublisher:
    """Pushes a board's full snapshot to its subscribers.

    The snapshot is always read from the database at publish time, so callers
    must publish only after the write they announce has been committed.

    Reading a snapshot and writing it out happen under a per-board lock, so
    snapshots reach every connection in the order they were read. The board
    lock is always taken before the broadcast manager's registry lock.
    """

    def __init__(self, manager: BroadcastManager, session_factory: Callable[[], Session]):
        self.manager = manager
        self._session_factory = session_factory
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _board_lock(self, board_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(board_id, threading.Lock())

    def snapshot(self, board_id: str, db: Session | None = None) -> BoardSnapshot | None:
        if db is not None:
            return load_snapshot(db, board_id)
        session = self._session_factory()
        try:
            return load_snapshot(session, board_id)
        finally:
            session.close()

    def full_event(self, board_id: str, db: Session | None = None) -> FullEvent | None:
        snapshot = self.snapshot(board_id, db)
        return FullEvent(data=snapshot) if snapshot else None

    def subscribe(self, board_id: str, connection: Connection) -> None:
        """Register a push connection, writing it the current snapshot first.

        Raises:
            ConnectionError (or whatever the connection raises) if the
            snapshot cannot be written; the connection is then not registered.
        """
        with self._board_lock(board_id):
            self.manager.add_client(board_id, connection, lambda: self.full_event(board_id))

    def publish(self, board_id: str, db: Session | None = None) -> int:
        """Broadcast the current snapshot of a board.

        Args:
            board_id: Board to publish
            db: Session that committed the change, if any. Reading through it
                keeps the push consistent with what the request just wrote.

        Returns:
            Number of connections written to.
        """
        if self.manager.client_count(board_id) == 0:
            return 0
        with self._board_lock(board_id):
            event = self.full_event(board_id, db)
            if event is None:
                logger.debug(f"Board {board_id} no longer exists, nothing to publish")
                return 0
            return self.manager.broadcast(board_id, event)

    def publish_many(self, board_ids: Iterable[str]) -> int:
        return sum(self.publish(board_id) for board_id in dict.fromkeys(board_ids))
