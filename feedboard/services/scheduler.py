"""Periodic expiry sweeps.

Two sweeps keep time-bound state honest without any client being online:

- expired time-mode overrides revert the board to AUTO (every minute);
- expired horse notes are cleared (hourly).

Each sweep commits row by row and then re-broadcasts every affected board
once, after its commit.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedboard.models import Board, Horse
from feedboard.models.enums import TimeMode
from feedboard.models.mixins import utcnow
from feedboard.services.timers import PeriodicTask

logger = logging.getLogger(__name__)

OVERRIDE_SWEEP_INTERVAL = 60.0
NOTE_SWEEP_INTERVAL = 3600.0


def expire_overrides(db: Session, now: datetime | None = None) -> list[str]:
    """Revert boards whose time-mode override has expired to AUTO.

    Returns:
        Ids of the boards that were changed
    """
    now = now or utcnow()
    candidates = (
        db.query(Board.id)
        .filter(
            Board.time_mode != TimeMode.AUTO.value,
            Board.override_until.isnot(None),
            Board.override_until < now,
        )
        .all()
    )

    affected: list[str] = []
    for (board_id,) in candidates:
        try:
            # Re-check the condition: the board may have been deleted or
            # given a new override since it was selected.
            result = db.execute(
                update(Board)
                .where(
                    Board.id == board_id,
                    Board.time_mode != TimeMode.AUTO.value,
                    Board.override_until < now,
                )
                .values(time_mode=TimeMode.AUTO.value, override_until=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to expire override of board {board_id}: {e}", exc_info=True)
            continue

        if result.rowcount:
            affected.append(board_id)
            logger.info(f"Time-mode override expired: board={board_id}")

    return affected


def expire_notes(db: Session, now: datetime | None = None) -> list[str]:
    """Clear horse notes whose expiry has passed.

    Returns:
        Ids of the boards owning a changed horse, without duplicates
    """
    now = now or utcnow()
    candidates = (
        db.query(Horse.id, Horse.board_id)
        .filter(
            Horse.note.isnot(None),
            Horse.note_expiry.isnot(None),
            Horse.note_expiry < now,
        )
        .all()
    )

    affected: dict[str, None] = {}
    for horse_id, board_id in candidates:
        try:
            result = db.execute(
                update(Horse)
                .where(
                    Horse.id == horse_id,
                    Horse.note.isnot(None),
                    Horse.note_expiry < now,
                )
                .values(note=None, note_expiry=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to expire note of horse {horse_id}: {e}", exc_info=True)
            continue

        if result.rowcount:
            affected[board_id] = None

    if affected:
        logger.info(f"Expired notes on {len(affected)} board(s)")
    return list(affected)


class Scheduler:
    """Runs the expiry sweeps on the server loop."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        on_board_changed: Callable[[str], Any],
        *,
        override_interval: float = OVERRIDE_SWEEP_INTERVAL,
        note_interval: float = NOTE_SWEEP_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._on_board_changed = on_board_changed
        self._clock = clock
        self._override_task = PeriodicTask("override-expiry", override_interval, self._override_tick)
        self._note_task = PeriodicTask("note-expiry", note_interval, self._note_tick)
        self.stats = {
            "override_sweeps": 0,
            "overrides_expired": 0,
            "note_sweeps": 0,
            "boards_with_notes_expired": 0,
        }

    def _sweep(self, sweep: Callable[[Session, datetime], list[str]]) -> list[str]:
        db = self._session_factory()
        try:
            board_ids = sweep(db, self._clock())
        finally:
            db.close()

        # Broadcast strictly after the sweep's commits.
        for board_id in board_ids:
            try:
                self._on_board_changed(board_id)
            except Exception as e:
                logger.error(f"Failed to publish board {board_id} after sweep: {e}", exc_info=True)
        return board_ids

    def run_override_sweep(self) -> list[str]:
        board_ids = self._sweep(expire_overrides)
        self.stats["override_sweeps"] += 1
        self.stats["overrides_expired"] += len(board_ids)
        return board_ids

    def run_note_sweep(self) -> list[str]:
        board_ids = self._sweep(expire_notes)
        self.stats["note_sweeps"] += 1
        self.stats["boards_with_notes_expired"] += len(board_ids)
        return board_ids

    async def _override_tick(self) -> None:
        await asyncio.to_thread(self.run_override_sweep)

    async def _note_tick(self) -> None:
        await asyncio.to_thread(self.run_note_sweep)

    def start(self) -> None:
        self._override_task.start()
        self._note_task.start()
        logger.info(
            f"Scheduler started (overrides every {self._override_task.interval}s, "
            f"notes every {self._note_task.interval}s)"
        )

    @property
    def running(self) -> bool:
        return self._override_task.running or self._note_task.running

    async def shutdown(self) -> None:
        await self._override_task.stop()
        await self._note_task.stop()
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "running": self.running}
