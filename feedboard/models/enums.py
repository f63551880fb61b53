"""Enums for model fields."""

from enum import Enum


class TimeMode(str, Enum):
    """Configured time mode of a board."""

    AUTO = "AUTO"
    AM = "AM"
    PM = "PM"

    def is_override(self) -> bool:
        """Check if this mode is a manual override of automatic detection."""
        return self != TimeMode.AUTO


class FeedUnit(str, Enum):
    """Units a feed amount can be measured in."""

    SCOOP = "scoop"
    ML = "ml"
    SACHET = "sachet"
    BISCUIT = "biscuit"
