"""Diet API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from feedboard.api.dependencies import (
    get_board_or_404,
    get_feed_or_404,
    get_horse_or_404,
    get_publisher,
    get_rankings,
)
from feedboard.database import get_db
from feedboard.models import DietEntry, Horse
from feedboard.schemas import AMOUNT_FIELDS, DietEntryResponse, DietEntryUpsert, Envelope, ok
from feedboard.services.board_state import BoardPublisher
from feedboard.services.rankings import RankingManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["diet"])


@router.get("/boards/{board_id}/diet", response_model=Envelope[list[DietEntryResponse]])
def get_diet(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Get all diet entries of a board."""
    get_board_or_404(db, board_id)
    entries = (
        db.query(DietEntry)
        .join(Horse, DietEntry.horse_id == Horse.id)
        .filter(Horse.board_id == board_id)
        .order_by(DietEntry.horse_id, DietEntry.feed_id)
        .all()
    )
    return ok([DietEntryResponse.model_validate(e) for e in entries])


@router.put("/diet", response_model=Envelope[DietEntryResponse | None])
def upsert_diet_entry(
    entry_data: DietEntryUpsert,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
    rankings: Annotated[RankingManager, Depends(get_rankings)],
):
    """Write the AM and/or PM amount of a horse's feed.

    Amount fields missing from the request keep their value. The entry is
    created on its first non-null amount and deleted once both are null, in
    which case ``data`` is null.
    """
    changes = {f: getattr(entry_data, f) for f in AMOUNT_FIELDS if f in entry_data.model_fields_set}
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No amount given (am_amount or pm_amount)"
        )

    horse = get_horse_or_404(db, entry_data.horse_id)
    feed = get_feed_or_404(db, entry_data.feed_id)
    if horse.board_id != feed.board_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Horse and feed belong to different boards"
        )

    entry = db.get(DietEntry, (horse.id, feed.id))
    if entry is None:
        if all(v is None for v in changes.values()):
            # Clearing an entry that does not exist
            return ok(None)
        entry = DietEntry(horse_id=horse.id, feed_id=feed.id, **changes)
        db.add(entry)
    else:
        for field, value in changes.items():
            setattr(entry, field, value)

    result: DietEntryResponse | None = None
    if entry.is_empty:
        db.delete(entry)
        db.commit()
        logger.debug(f"Diet entry {horse.id}:{feed.id} removed")
    else:
        db.commit()
        db.refresh(entry)
        result = DietEntryResponse.model_validate(entry)

    publisher.publish(horse.board_id, db)
    rankings.schedule_recalculation(horse.board_id)
    return ok(result)
