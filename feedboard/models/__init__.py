"""SQLAlchemy models."""

from feedboard.models.board import Board
from feedboard.models.diet_entry import DietEntry
from feedboard.models.feed import Feed
from feedboard.models.horse import Horse

__all__ = [
    "Board",
    "Horse",
    "Feed",
    "DietEntry",
]
