"""Feed ranking.

A feed's rank reflects how many horses on the board are fed it: rank 1 is
the most used feed. Diet edits come in bursts, so recomputation is debounced
per board and runs off the request path; ranks may lag a diet change by the
debounce delay.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import distinct, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedboard.models import Board, DietEntry, Feed
from feedboard.services.timers import Debouncer

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


def compute_feed_ranks(db: Session, board_id: str) -> list[tuple[str, int]]:
    """Rank a board's feeds by usage.

    Usage is the number of distinct horses with a non-zero AM or PM amount
    of the feed. Ties keep insertion order (position, then created_at, then
    id), so the result is deterministic.

    Returns:
        (feed_id, rank) pairs, ranks 1..N
    """
    feeds = db.query(Feed).filter(Feed.board_id == board_id).all()
    usage = dict(
        db.query(DietEntry.feed_id, func.count(distinct(DietEntry.horse_id)))
        .join(Feed, DietEntry.feed_id == Feed.id)
        .filter(
            Feed.board_id == board_id,
            or_(DietEntry.am_amount > 0, DietEntry.pm_amount > 0),
        )
        .group_by(DietEntry.feed_id)
        .all()
    )

    ordered = sorted(feeds, key=lambda f: (-usage.get(f.id, 0), f.position, f.created_at, f.id))
    return [(feed.id, rank) for rank, feed in enumerate(ordered, start=1)]


def apply_feed_ranks(db: Session, board_id: str) -> int | None:
    """Recompute and store the ranks of a board's feeds in one transaction.

    Only feeds whose rank changed are written (and get a new updated_at).

    Returns:
        Number of ranked feeds, or None if the board does not exist
    """
    if not db.query(Board.id).filter(Board.id == board_id).first():
        return None

    ranks = compute_feed_ranks(db, board_id)
    changed = 0
    for feed_id, rank in ranks:
        feed = db.get(Feed, feed_id)
        if feed is not None and feed.rank != rank:
            feed.rank = rank
            changed += 1
    db.commit()
    logger.debug(f"Ranked {len(ranks)} feeds of board {board_id}, {changed} changed")
    return len(ranks)


class RankingManager:
    """Debounced, per-board feed rank recomputation."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        on_complete: Callable[[str], Any] | None = None,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._session_factory = session_factory
        self._on_complete = on_complete
        self._debouncer = Debouncer(debounce_seconds, self._run_debounced, loop)
        self.stats = {"scheduled": 0, "recalculations": 0, "skipped": 0}

    def schedule_recalculation(self, board_id: str) -> None:
        """Request a recompute; repeated requests within the delay collapse into one."""
        self.stats["scheduled"] += 1
        self._debouncer.schedule(board_id)

    async def _run_debounced(self, board_id: str) -> None:
        await asyncio.to_thread(self._recalculate, board_id)

    def _recalculate(self, board_id: str) -> int | None:
        db = self._session_factory()
        try:
            count = apply_feed_ranks(db, board_id)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        if count is None:
            self.stats["skipped"] += 1
            logger.debug(f"Board {board_id} is gone, skipping rank update")
            return None

        self.stats["recalculations"] += 1
        logger.info(f"Feed ranks updated: board={board_id} feeds={count}")
        if self._on_complete:
            self._on_complete(board_id)
        return count

    def recalculate_now(self, board_id: str) -> int:
        """Recompute immediately, dropping any pending debounced run.

        Returns:
            Number of ranked feeds (0 if the board does not exist)
        """
        self._debouncer.cancel(board_id)
        return self._recalculate(board_id) or 0

    def has_pending(self, board_id: str) -> bool:
        return self._debouncer.pending(board_id)

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "pending_count": self._debouncer.pending_count}

    async def shutdown(self) -> None:
        await self._debouncer.shutdown()
