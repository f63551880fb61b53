"""Feed API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from feedboard.api.dependencies import get_board_or_404, get_feed_or_404, get_publisher, get_rankings
from feedboard.database import get_db
from feedboard.models import Feed
from feedboard.schemas import Envelope, FeedCreate, FeedResponse, FeedUpdate, ok
from feedboard.services.board_state import BoardPublisher
from feedboard.services.rankings import RankingManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["feeds"])


@router.get("/boards/{board_id}/feeds", response_model=Envelope[list[FeedResponse]])
def get_feeds(
    board_id: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Get all feeds of a board in insertion order."""
    get_board_or_404(db, board_id)
    feeds = db.query(Feed).filter(Feed.board_id == board_id).order_by(Feed.position, Feed.id).all()
    return ok([FeedResponse.model_validate(f) for f in feeds])


@router.post(
    "/boards/{board_id}/feeds",
    response_model=Envelope[FeedResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_feed(
    board_id: str,
    feed_data: FeedCreate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
    rankings: Annotated[RankingManager, Depends(get_rankings)],
):
    """Add a feed to a board."""
    get_board_or_404(db, board_id)

    # Append after the last feed; position is the rank tie-breaker
    max_position = (
        db.query(func.max(Feed.position)).filter(Feed.board_id == board_id).scalar() or 0
    )
    feed = Feed(
        board_id=board_id,
        name=feed_data.name.strip(),
        unit=feed_data.unit.value,
        position=max_position + 1,
    )
    db.add(feed)
    db.commit()
    db.refresh(feed)

    publisher.publish(board_id, db)
    rankings.schedule_recalculation(board_id)
    return ok(FeedResponse.model_validate(feed))


@router.patch("/feeds/{feed_id}", response_model=Envelope[FeedResponse])
def update_feed(
    feed_id: str,
    feed_data: FeedUpdate,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
):
    """Update a feed."""
    feed = get_feed_or_404(db, feed_id)

    for field, value in feed_data.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        if field == "name":
            value = value.strip()
        elif field == "unit":
            value = value.value
        setattr(feed, field, value)

    db.commit()
    db.refresh(feed)

    publisher.publish(feed.board_id, db)
    return ok(FeedResponse.model_validate(feed))


@router.delete("/feeds/{feed_id}", response_model=Envelope[None])
def delete_feed(
    feed_id: str,
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[BoardPublisher, Depends(get_publisher)],
    rankings: Annotated[RankingManager, Depends(get_rankings)],
):
    """Delete a feed and the diet entries using it."""
    feed = get_feed_or_404(db, feed_id)
    board_id = feed.board_id

    db.delete(feed)
    db.commit()
    logger.info(f"Feed deleted: {feed_id} (board {board_id})")

    publisher.publish(board_id, db)
    rankings.schedule_recalculation(board_id)
    return ok()
