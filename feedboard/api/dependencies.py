"""FastAPI dependencies for services and entity lookup."""

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from feedboard.config import Settings
from feedboard.models import Board, Feed, Horse
from feedboard.services.board_state import BoardPublisher
from feedboard.services.rankings import RankingManager


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_publisher(request: Request) -> BoardPublisher:
    return request.app.state.publisher


def get_rankings(request: Request) -> RankingManager:
    return request.app.state.rankings


def get_board_or_404(db: Session, board_id: str) -> Board:
    board = db.query(Board).filter(Board.id == board_id).first()
    if not board:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
    return board


def get_horse_or_404(db: Session, horse_id: str) -> Horse:
    horse = db.query(Horse).filter(Horse.id == horse_id).first()
    if not horse:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Horse not found")
    return horse


def get_feed_or_404(db: Session, feed_id: str) -> Feed:
    feed = db.query(Feed).filter(Feed.id == feed_id).first()
    if not feed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feed not found")
    return feed
