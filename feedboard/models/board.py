"""Board model."""

import secrets

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from feedboard.database import Base
from feedboard.models.enums import TimeMode
from feedboard.models.mixins import TimestampMixin, generate_id


def generate_pair_code() -> str:
    """Six digit pairing code."""
    return f"{secrets.randbelow(1_000_000):06d}"


class Board(Base, TimestampMixin):
    """Board model: the shared configuration of one display and its controllers."""

    __tablename__ = "boards"

    id = Column(String(32), primary_key=True, default=lambda: generate_id("b"))
    pair_code = Column(String(6), nullable=False, unique=True, index=True, default=generate_pair_code)
    timezone = Column(String(64), nullable=False, default="UTC")
    time_mode = Column(String(8), nullable=False, default=TimeMode.AUTO.value, index=True)
    override_until = Column(DateTime(timezone=True), nullable=True)
    zoom_level = Column(Integer, nullable=False, default=2)
    current_page = Column(Integer, nullable=False, default=0)

    # Relationships
    horses = relationship(
        "Horse", back_populates="board", cascade="all, delete-orphan"
    )
    feeds = relationship(
        "Feed", back_populates="board", cascade="all, delete-orphan"
    )
