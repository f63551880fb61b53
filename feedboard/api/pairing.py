"""Pairing endpoint: a controller joins a board with its six digit code."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from feedboard.database import get_db
from feedboard.models import Board
from feedboard.schemas import Envelope, PairRequest, PairResult, ok

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pairing"])


@router.post("/pair", response_model=Envelope[PairResult])
def pair(
    pair_data: PairRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """Resolve a pairing code to its board."""
    board = db.query(Board).filter(Board.pair_code == pair_data.code).first()
    if not board:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid pairing code")

    logger.info(f"Controller paired with board {board.id}")
    return ok(PairResult(board_id=board.id))
