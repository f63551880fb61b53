"""Feed model."""

from sqlalchemy import Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from feedboard.database import Base
from feedboard.models.enums import FeedUnit
from feedboard.models.mixins import TimestampMixin, generate_id


class Feed(Base, TimestampMixin):
    """Feed available on a board."""

    __tablename__ = "feeds"

    id = Column(String(32), primary_key=True, default=lambda: generate_id("f"))
    board_id = Column(
        String(32), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(50), nullable=False)
    unit = Column(String(16), nullable=False, default=FeedUnit.SCOOP.value)
    rank = Column(Integer, nullable=False, default=0)  # 1 = most used
    position = Column(Integer, nullable=False, default=0)  # insertion order within the board
    stock_level = Column(Float, nullable=False, default=0)
    low_stock_threshold = Column(Float, nullable=False, default=0)

    # Relationships
    board = relationship("Board", back_populates="feeds")
    diet_entries = relationship(
        "DietEntry", back_populates="feed", cascade="all, delete-orphan"
    )
