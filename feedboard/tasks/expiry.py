"""Celery tasks for override and note expiry."""

import logging
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from feedboard.celery_app import app as celery_app
from feedboard.database import SessionLocal
from feedboard.services.realtime import publish_board_changed
from feedboard.services.scheduler import expire_notes, expire_overrides

logger = logging.getLogger(__name__)


@celery_app.task
def expire_overrides_task() -> dict:
    """Revert expired time-mode overrides to AUTO.

    Runs every minute via celery-beat. Each changed board is announced on
    Redis after its commit so the web process can push it.

    Returns:
        dict with processing statistics
    """
    db: Session = SessionLocal()
    try:
        board_ids = expire_overrides(db, datetime.now(UTC))
    finally:
        db.close()

    published = sum(publish_board_changed(board_id, "override_expired") for board_id in board_ids)
    if board_ids:
        logger.info(f"Expired overrides on {len(board_ids)} board(s)")
    return {"expired": len(board_ids), "published": published}


@celery_app.task
def expire_notes_task() -> dict:
    """Clear expired horse notes.

    Runs hourly via celery-beat.

    Returns:
        dict with processing statistics
    """
    db: Session = SessionLocal()
    try:
        board_ids = expire_notes(db, datetime.now(UTC))
    finally:
        db.close()

    published = sum(publish_board_changed(board_id, "note_expired") for board_id in board_ids)
    return {"boards": len(board_ids), "published": published}
