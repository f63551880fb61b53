"""Board API endpoints, including the push channel."""

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from feedboard.api.dependencies import (
    get_app_settings,
    get_board_or_404,
    get_publisher,
    get_rankings,
)
from feedboard.config import Settings
from feedboard.database import get_db
from feedboard.models import Board, Feed
from feedboard.models.board import generate_pair_code
from feedboard.models.enums import TimeMode
from feedboard.schemas import (
    BoardCreate,
    BoardResponse,
    BoardSnapshot,
    BoardUpdate,
    Envelope,
    FeedResponse,
    TimeModeStatus,
    TimeModeUpdate,
    ok,
)
from feedboard.services.board_state import BoardPublisher, load_snapshot
from feedboard.services.broadcast import QueueConnection
from feedboard.services.rankings import RankingManager
from feedboard.timemode import calculate_override_expiry, get_effective_time_mode

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/boards", tags=["boards"])

PAIR_CODE_ATTEMPTS = 10

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _unused_pair_code(db: Session) -> str:
    for _ in range(PAIR_CODE_ATTEMPTS):
        code = generate_pair_code()
        if not db.query(Board.id).filter(Board.pair_code == code).first():
            return code
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not allocate a pairing code"
    )


@router.post("", response_model=Envelope[BoardResponse], status_code=status.HTTP_201_CREATED)
def create_board(
    board_data: BoardCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """Create a new board with a fresh pairing code."""
    board = Board(timezone=board_data.timezone, pair_code=_unused_pair_code(db))
    db.add(board)
    db.commit()
    db.refresh(board)
    logger.info(f"Board created: {board.id}")
    return ok(BoardResponse.model_validate(board))


@router.get("/{board_id}", response_model=Envelope[BoardResponse])
def get_board(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Get a board."""
    return ok(BoardResponse.model_validate(get_board_or_404(db, board_id)))


@router.patch("/{board_id}", response_model=Envelope[BoardResponse])
def update_board(
    board_id: str,
    board_data: BoardUpdate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Update display settings of a board."""
    board = get_board_or_404(db, board_id)

    for field, value in board_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(board, field, value)

    db.commit()
    db.refresh(board)
    publisher.publish(board_id, db)
    return ok(BoardResponse.model_validate(board))


@router.get("/{board_id}/snapshot", response_model=Envelope[BoardSnapshot])
def get_snapshot(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Complete board state, for bootstrapping and re-fetching clients."""
    snapshot = load_snapshot(db, board_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
    return ok(snapshot)


@router.get("/{board_id}/time-mode", response_model=Envelope[TimeModeStatus])
def get_time_mode(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Configured and effective time mode."""
    board = get_board_or_404(db, board_id)
    current = BoardResponse.model_validate(board)
    return ok(
        TimeModeStatus(
            time_mode=current.time_mode,
            effective_time_mode=get_effective_time_mode(
                current.time_mode, current.override_until, current.timezone
            ),
            override_until=current.override_until,
        )
    )


@router.put("/{board_id}/time-mode", response_model=Envelope[BoardResponse])
def set_time_mode(
    board_id: str,
    mode_data: TimeModeUpdate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    """Set the time mode. AM/PM are overrides that expire; AUTO clears any override."""
    board = get_board_or_404(db, board_id)

    if mode_data.time_mode.is_override():
        board.time_mode = mode_data.time_mode.value
        board.override_until = mode_data.override_until or calculate_override_expiry(
            minutes=settings.override_duration_minutes
        )
    else:
        board.time_mode = TimeMode.AUTO.value
        board.override_until = None

    db.commit()
    db.refresh(board)
    logger.info(f"Time mode of board {board_id} set to {board.time_mode}")
    publisher.publish(board_id, db)
    return ok(BoardResponse.model_validate(board))


@router.delete("/{board_id}/time-mode", response_model=Envelope[BoardResponse])
def clear_time_mode(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Clear a time-mode override."""
    board = get_board_or_404(db, board_id)
    board.time_mode = TimeMode.AUTO.value
    board.override_until = None
    db.commit()
    db.refresh(board)
    publisher.publish(board_id, db)
    return ok(BoardResponse.model_validate(board))


@router.post("/{board_id}/feeds/recalculate-rankings", response_model=Envelope[list[FeedResponse]])
def recalculate_rankings(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
    rankings: Annotated[RankingManager, Depends(get_rankings)],
):
    """Recompute feed ranks now instead of waiting for the debounce."""
    get_board_or_404(db, board_id)
    rankings.recalculate_now(board_id)

    db.expire_all()
    feeds = db.query(Feed).filter(Feed.board_id == board_id).order_by(Feed.rank).all()
    return ok([FeedResponse.model_validate(f) for f in feeds])


@router.get("/{board_id}/events")
async def board_events(
    board_id: str,
    request: Request,
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Push channel for a board (text/event-stream).

    The first frame is the full snapshot; every later change is pushed as a
    new snapshot. Comment frames keep idle connections open.
    """
    if await asyncio.to_thread(publisher.snapshot, board_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")

    connection = QueueConnection(asyncio.get_running_loop())
    await asyncio.to_thread(publisher.subscribe, board_id, connection)
    logger.debug(f"Push stream opened for {request.client.host if request.client else 'unknown'}")

    return StreamingResponse(
        connection.stream(), media_type="text/event-stream", headers=SSE_HEADERS
    )
