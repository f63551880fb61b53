"""Horse model."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from feedboard.database import Base
from feedboard.models.mixins import TimestampMixin, generate_id


class Horse(Base, TimestampMixin):
    """Horse on a board."""

    __tablename__ = "horses"

    id = Column(String(32), primary_key=True, default=lambda: generate_id("h"))
    board_id = Column(
        String(32), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(50), nullable=False)
    note = Column(String(200), nullable=True)
    note_expiry = Column(DateTime(timezone=True), nullable=True, index=True)
    archived = Column(Boolean, nullable=False, default=False)

    # Relationships
    board = relationship("Board", back_populates="horses")
    diet_entries = relationship(
        "DietEntry", back_populates="horse", cascade="all, delete-orphan"
    )
