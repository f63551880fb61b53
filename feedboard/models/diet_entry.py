"""Diet entry model."""

from sqlalchemy import Column, Float, ForeignKey, String
from sqlalchemy.orm import relationship

from feedboard.database import Base
from feedboard.models.mixins import TimestampMixin


class DietEntry(Base, TimestampMixin):
    """Per-horse, per-feed AM/PM amounts."""

    __tablename__ = "diet_entries"

    horse_id = Column(
        String(32), ForeignKey("horses.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    feed_id = Column(
        String(32), ForeignKey("feeds.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    am_amount = Column(Float, nullable=True)
    pm_amount = Column(Float, nullable=True)

    # Relationships
    horse = relationship("Horse", back_populates="diet_entries")
    feed = relationship("Feed", back_populates="diet_entries")

    @property
    def is_empty(self) -> bool:
        """Both amounts cleared; the entry should not exist."""
        return self.am_amount is None and self.pm_amount is None

    @property
    def is_active(self) -> bool:
        """At least one non-null, non-zero amount."""
        return bool(self.am_amount) or bool(self.pm_amount)
