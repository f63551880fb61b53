"""Horse API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from feedboard.api.dependencies import get_board_or_404, get_horse_or_404, get_publisher, get_rankings
from feedboard.database import get_db
from feedboard.models import Horse
from feedboard.schemas import Envelope, HorseCreate, HorseResponse, HorseUpdate, ok
from feedboard.services.board_state import BoardPublisher
from feedboard.services.rankings import RankingManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["horses"])


@router.get("/boards/{board_id}/horses", response_model=Envelope[list[HorseResponse]])
def get_horses(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Get all horses of a board, archived ones included."""
    get_board_or_404(db, board_id)
    horses = (
        db.query(Horse).filter(Horse.board_id == board_id).order_by(Horse.created_at, Horse.id).all()
    )
    return ok([HorseResponse.model_validate(h) for h in horses])


@router.post(
    "/boards/{board_id}/horses",
    response_model=Envelope[HorseResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_horse(
    board_id: str,
    horse_data: HorseCreate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Add a horse to a board."""
    get_board_or_404(db, board_id)

    horse = Horse(
        board_id=board_id,
        name=horse_data.name.strip(),
        note=horse_data.note,
        note_expiry=horse_data.note_expiry if horse_data.note else None,
    )
    db.add(horse)
    db.commit()
    db.refresh(horse)

    publisher.publish(board_id, db)
    return ok(HorseResponse.model_validate(horse))


@router.patch("/horses/{horse_id}", response_model=Envelope[HorseResponse])
def update_horse(
    horse_id: str,
    horse_data: HorseUpdate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Update a horse. ``note: null`` clears the note and its expiry."""
    horse = get_horse_or_404(db, horse_id)
    update_data = horse_data.model_dump(exclude_unset=True)

    if update_data.get("name") is not None:
        horse.name = update_data["name"].strip()
    if update_data.get("archived") is not None:
        horse.archived = update_data["archived"]
    if "note" in update_data:
        horse.note = update_data["note"]
        if horse.note is None:
            horse.note_expiry = None
    if "note_expiry" in update_data and horse.note is not None:
        horse.note_expiry = update_data["note_expiry"]

    db.commit()
    db.refresh(horse)

    publisher.publish(horse.board_id, db)
    return ok(HorseResponse.model_validate(horse))


@router.delete("/horses/{horse_id}", response_model=Envelope[None])
def delete_horse(
    horse_id: str,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
    rankings: Annotated[RankingManager, Depends(get_rankings)],
):
    """Delete a horse and its diet entries."""
    horse = get_horse_or_404(db, horse_id)
    board_id = horse.board_id

    db.delete(horse)
    db.commit()
    logger.info(f"Horse deleted: {horse_id} (board {board_id})")

    publisher.publish(board_id, db)
    rankings.schedule_recalculation(board_id)
    return ok()
